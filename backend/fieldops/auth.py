"""Bearer token 驗證與權限等級檢查。
token 為 HS256 JWT，sub = employees.auth_user_id；每個請求重新查員工與職務，不做快取。

權限等級（roles.level）：
  0 technician_l1
  1 assigner / pm / rma / sale / technician / technician_l2
  2 admin
  3 superadmin（最高等級，require_super_admin 即 require_min_level(3)）
"""
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fieldops.config import settings
from fieldops.database import get_db
from fieldops.errors import AuthenticationError, AuthorizationError
from fieldops.models import Employee, Role

logger = logging.getLogger(__name__)

LEVEL_APPROVER = 1
LEVEL_ADMIN = 2
LEVEL_SUPER_ADMIN = 3

_bearer_scheme = HTTPBearer(auto_error=False)


class RoleData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name_th: str
    level: Optional[int] = 0


class Actor(BaseModel):
    """已驗證的呼叫者"""
    id: str
    name: str
    code: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    role_id: Optional[str] = None
    role_data: Optional[RoleData] = None
    department_id: Optional[str] = None
    department_code: Optional[str] = None

    @property
    def level(self) -> int:
        if self.role_data is None or self.role_data.level is None:
            return 0
        return self.role_data.level


def actor_from_employee(employee: Employee) -> Actor:
    role = employee.role
    department = role.department if role is not None else None
    return Actor(
        id=employee.id,
        name=employee.name,
        code=employee.code,
        email=employee.email,
        is_active=employee.is_active,
        role_id=employee.role_id,
        role_data=RoleData.model_validate(role) if role is not None else None,
        department_id=department.id if department is not None else None,
        department_code=department.code if department is not None else None,
    )


def decode_token(token: str) -> str:
    """回傳 sub（auth_user_id）；無效或過期一律 AuthenticationError"""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthenticationError("Session หมดอายุกรุณาเข้าใช้งานใหม่")
    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Session หมดอายุกรุณาเข้าใช้งานใหม่")
    return str(sub)


async def load_actor(db: AsyncSession, auth_user_id: str) -> Actor:
    stmt = (
        select(Employee)
        .where(Employee.auth_user_id == auth_user_id, Employee.is_active.is_(True))
        .options(selectinload(Employee.role).selectinload(Role.department))
    )
    employee = (await db.execute(stmt)).scalar_one_or_none()
    if employee is None:
        raise AuthenticationError("ไม่พบข้อมูลพนักงาน")
    return actor_from_employee(employee)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """FastAPI dependency：Authorization: Bearer <token> → Actor"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("ไม่พบข้อมูลการยืนยันตัวตน")
    auth_user_id = decode_token(credentials.credentials)
    return await load_actor(db, auth_user_id)


# ---------- 權限檢查（在任何資料存取之前呼叫） ----------
def get_level(actor: Actor) -> int:
    return actor.level


def require_min_level(actor: Actor, min_level: int) -> None:
    if get_level(actor) < min_level:
        raise AuthorizationError(f"ต้องมีสิทธิ์ระดับ {min_level} ขึ้นไป")


def require_super_admin(actor: Actor) -> None:
    require_min_level(actor, LEVEL_SUPER_ADMIN)


def require_level_greater_than_zero(actor: Actor) -> None:
    if get_level(actor) <= 0:
        raise AuthorizationError("ไม่มีสิทธิ์เข้าถึง")


def is_admin(actor: Actor) -> bool:
    return get_level(actor) >= LEVEL_ADMIN


def is_super_admin(actor: Actor) -> bool:
    return get_level(actor) >= LEVEL_SUPER_ADMIN


def can_approve(actor: Actor) -> bool:
    return get_level(actor) >= LEVEL_APPROVER
