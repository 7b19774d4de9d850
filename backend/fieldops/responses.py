"""統一回應格式：{data} / {data, pagination} / {error, code}"""
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": jsonable_encoder(data)})


def paginated(data: list, pagination: dict) -> JSONResponse:
    return JSONResponse(content={"data": jsonable_encoder(data), "pagination": pagination})


def error(message: str, status_code: int = 500, code: Optional[str] = None) -> JSONResponse:
    content = {"error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)
