"""initial schema - 組織、案場、工單、請假、投票、LINE 暫存檔

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), nullable=False)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    # departments.head_id ↔ employees 互相參照，外鍵於 employees 建立後補上
    op.create_table(
        "departments",
        _id(),
        sa.Column("code", sa.String(50), nullable=False, comment="部門代碼，例：technical"),
        sa.Column("name_th", sa.String(200), nullable=False, comment="泰文名稱"),
        sa.Column("name_en", sa.String(200), nullable=True, comment="英文名稱"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("head_id", sa.String(36), nullable=True, comment="部門主管 employee_id"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_departments_code"), "departments", ["code"], unique=True)

    op.create_table(
        "roles",
        _id(),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name_th", sa.String(200), nullable=False),
        sa.Column("name_en", sa.String(200), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True, comment="權限等級，未設視為 0"),
        sa.Column("department_id", sa.String(36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_roles_code"), "roles", ["code"], unique=True)
    op.create_index(op.f("ix_roles_department_id"), "roles", ["department_id"], unique=False)

    op.create_table(
        "employees",
        _id(),
        sa.Column("code", sa.String(50), nullable=True, comment="員工編號"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("nickname", sa.String(100), nullable=True),
        sa.Column("email", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role_id", sa.String(36), nullable=True),
        sa.Column("auth_user_id", sa.String(36), nullable=True, comment="登入帳號 id（JWT sub）"),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("profile_image_url", sa.String(500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_employees_code"), "employees", ["code"], unique=True)
    op.create_index(op.f("ix_employees_role_id"), "employees", ["role_id"], unique=False)
    op.create_index(op.f("ix_employees_auth_user_id"), "employees", ["auth_user_id"], unique=True)

    # SQLite 不支援 ALTER TABLE ADD CONSTRAINT，僅 PostgreSQL 補外鍵
    if op.get_bind().dialect.name != "sqlite":
        op.create_foreign_key(
            "fk_departments_head_id_employees", "departments", "employees", ["head_id"], ["id"], ondelete="SET NULL"
        )

    op.create_table(
        "companies",
        _id(),
        sa.Column("tax_id", sa.String(20), nullable=True, comment="統一編號"),
        sa.Column("name_th", sa.String(300), nullable=False),
        sa.Column("name_en", sa.String(300), nullable=True),
        sa.Column("address_detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_companies_tax_id"), "companies", ["tax_id"], unique=True)

    op.create_table(
        "sites",
        _id(),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("subdistrict_code", sa.Integer(), nullable=True),
        sa.Column("district_code", sa.Integer(), nullable=True),
        sa.Column("province_code", sa.Integer(), nullable=True),
        sa.Column("postal_code", sa.Integer(), nullable=True),
        sa.Column("address_detail", sa.Text(), nullable=True),
        sa.Column("map_url", sa.String(1000), nullable=True),
        sa.Column("company_id", sa.String(36), nullable=True),
        sa.Column("contact_ids", sa.JSON(), nullable=True, comment="聯絡人 id 陣列"),
        sa.Column("is_main_branch", sa.Boolean(), nullable=True),
        sa.Column("safety_standard", sa.JSON(), nullable=True, comment="安全規範清單"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", "company_id", "subdistrict_code", name="uq_sites_natural_key"),
    )
    op.create_index(op.f("ix_sites_name"), "sites", ["name"], unique=False)
    op.create_index(op.f("ix_sites_company_id"), "sites", ["company_id"], unique=False)

    op.create_table(
        "product_models",
        _id(),
        sa.Column("model", sa.String(200), nullable=False),
        sa.Column("name", sa.String(300), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "merchandise",
        _id(),
        sa.Column("serial_no", sa.String(200), nullable=False),
        sa.Column("model_id", sa.String(36), nullable=True),
        sa.Column("site_id", sa.String(36), nullable=True),
        sa.ForeignKeyConstraint(["model_id"], ["product_models.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_merchandise_serial_no"), "merchandise", ["serial_no"], unique=False)
    op.create_index(op.f("ix_merchandise_site_id"), "merchandise", ["site_id"], unique=False)

    for table in ("work_types", "ticket_statuses"):
        op.create_table(
            table,
            _id(),
            sa.Column("code", sa.String(50), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )
    for table in ("work_givers", "leave_types"):
        op.create_table(
            table,
            _id(),
            sa.Column("code", sa.String(50), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )
    op.create_table(
        "provinces",
        _id(),
        sa.Column("code", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False, comment="泰文名稱"),
        sa.Column("name_en", sa.String(200), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "tickets",
        _id(),
        sa.Column("ticket_code", sa.String(50), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("site_id", sa.String(36), nullable=True),
        sa.Column("work_type_id", sa.String(36), nullable=True),
        sa.Column("status_id", sa.String(36), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=True, comment="預約日期"),
        sa.Column("appointment_time_start", sa.Time(), nullable=True),
        sa.Column("appointment_time_end", sa.Time(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["work_type_id"], ["work_types.id"]),
        sa.ForeignKeyConstraint(["status_id"], ["ticket_statuses.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tickets_ticket_code"), "tickets", ["ticket_code"], unique=True)
    op.create_index(op.f("ix_tickets_site_id"), "tickets", ["site_id"], unique=False)
    op.create_index(op.f("ix_tickets_appointment_date"), "tickets", ["appointment_date"], unique=False)

    op.create_table(
        "ticket_confirmed_technicians",
        _id(),
        sa.Column("ticket_id", sa.String(36), nullable=False),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("ticket_id", "employee_id", "date"):
        op.create_index(
            op.f(f"ix_ticket_confirmed_technicians_{column}"), "ticket_confirmed_technicians", [column], unique=False
        )

    op.create_table(
        "leave_requests",
        _id(),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("leave_type_id", sa.String(36), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Numeric(5, 1), nullable=True),
        sa.Column("half_day_type", sa.String(20), nullable=True, comment="morning / afternoon；全天為空"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, comment="pending/approved/rejected/cancelled"),
        sa.Column("approved_by", sa.String(36), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"]),
        sa.ForeignKeyConstraint(["approved_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_leave_requests_employee_id"), "leave_requests", ["employee_id"], unique=False)
    op.create_index(op.f("ix_leave_requests_leave_type_id"), "leave_requests", ["leave_type_id"], unique=False)
    op.create_index(op.f("ix_leave_requests_created_at"), "leave_requests", ["created_at"], unique=False)

    op.create_table(
        "polls",
        _id(),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("options", sa.JSON(), nullable=False, comment="選項文字陣列"),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_polls_expires_at"), "polls", ["expires_at"], unique=False)
    op.create_index(op.f("ix_polls_created_at"), "polls", ["created_at"], unique=False)

    op.create_table(
        "poll_votes",
        _id(),
        sa.Column("poll_id", sa.String(36), nullable=False),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("option_index", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["poll_id"], ["polls.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("poll_id", "employee_id", name="uq_poll_votes_poll_employee"),
    )
    op.create_index(op.f("ix_poll_votes_poll_id"), "poll_votes", ["poll_id"], unique=False)
    op.create_index(op.f("ix_poll_votes_employee_id"), "poll_votes", ["employee_id"], unique=False)

    op.create_table(
        "employee_line_accounts",
        _id(),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("line_user_id", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("profile_picture_url", sa.String(1000), nullable=True),
        sa.Column("active_ticket_id", sa.String(36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["active_ticket_id"], ["tickets.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_employee_line_accounts_employee_id"), "employee_line_accounts", ["employee_id"], unique=False)
    op.create_index(op.f("ix_employee_line_accounts_line_user_id"), "employee_line_accounts", ["line_user_id"], unique=True)

    op.create_table(
        "staged_files",
        _id(),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("file_url", sa.String(1000), nullable=False),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True, comment="bytes"),
        sa.Column("mime_type", sa.String(200), nullable=True),
        sa.Column("ticket_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("approved_by", sa.String(36), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("employee_id", "ticket_id", "status", "expires_at", "created_at"):
        op.create_index(op.f(f"ix_staged_files_{column}"), "staged_files", [column], unique=False)


def downgrade() -> None:
    for table in (
        "staged_files", "employee_line_accounts", "poll_votes", "polls", "leave_requests",
        "ticket_confirmed_technicians", "tickets", "provinces", "leave_types", "work_givers",
        "ticket_statuses", "work_types", "merchandise", "product_models", "sites", "companies",
    ):
        op.drop_table(table)
    if op.get_bind().dialect.name != "sqlite":
        op.drop_constraint("fk_departments_head_id_employees", "departments", type_="foreignkey")
    op.drop_table("employees")
    op.drop_table("roles")
    op.drop_table("departments")
