"""現場服務管理系統 API"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import DBAPIError

from fieldops.config import settings, resolve_storage_dir
from fieldops.database import AsyncSessionLocal
from fieldops.errors import APIError, translate_db_error
from fieldops.responses import error
from fieldops.routers import (
    departments,
    sites,
    employees,
    leave_requests,
    polls,
    reference_data,
    search,
    line_webhook,
)
from fieldops.services.staged_files import expire_pending_files

logger = logging.getLogger(__name__)
_scheduler: AsyncIOScheduler | None = None


async def _daily_staged_file_cleanup():
    try:
        async with AsyncSessionLocal() as db:
            count = await expire_pending_files(db)
            await db.commit()
        logger.info("暫存檔過期清理完成：%s 筆標記為 expired", count)
    except Exception:
        logger.exception("暫存檔過期清理排程執行失敗")


def _parse_schedule_time(value: str) -> tuple:
    """HH:MM → (hour, minute)；格式錯誤回到 03:00"""
    try:
        parts = value.strip().split(":")
        hour, minute = int(parts[0]), int(parts[1]) if len(parts) > 1 else 0
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(value)
        return hour, minute
    except (ValueError, IndexError):
        logger.warning("staged_file_cleanup_time 格式錯誤：%r，改用 03:00", value)
        return 3, 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    resolve_storage_dir().mkdir(parents=True, exist_ok=True)
    global _scheduler
    _scheduler = AsyncIOScheduler()
    hour, minute = _parse_schedule_time(settings.staged_file_cleanup_time)
    _scheduler.add_job(
        _daily_staged_file_cleanup,
        "cron",
        hour=hour,
        minute=minute,
        id="staged_file_cleanup",
        replace_existing=True,
    )
    _scheduler.start()
    yield
    if _scheduler:
        _scheduler.shutdown(wait=False)


app = FastAPI(
    title=settings.app_name,
    description="Field service management API",
    version="1.0.0",
    lifespan=lifespan,
)
# LINE 上傳的暫存檔：/storage/{bucket}/{path}
app.mount("/storage", StaticFiles(directory=str(resolve_storage_dir()), check_dir=False), name="storage")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(departments.router)
app.include_router(sites.router)
app.include_router(employees.router)
app.include_router(leave_requests.router)
app.include_router(polls.router)
app.include_router(reference_data.router)
app.include_router(search.router)
app.include_router(line_webhook.router)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return error(exc.message, exc.status_code, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return error("Not found", 404, "NOT_FOUND")
    if exc.status_code == 405:
        return error("Method not allowed", 405, "METHOD_NOT_ALLOWED")
    return error(str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(p) for p in errors[0].get("loc", ())[1:]) if errors else ""
    return error(f"{field or 'ข้อมูล'} ไม่ถูกต้อง", 400, "VALIDATION_ERROR")


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    translated = translate_db_error(exc)
    return error(translated.message, translated.status_code, translated.code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error("เกิดข้อผิดพลาดที่ไม่ทราบสาเหตุ", 500)


@app.get("/")
def home():
    return {"message": f"{settings.app_name} 運行中"}
