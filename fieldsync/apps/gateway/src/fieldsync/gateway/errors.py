"""集中异常处理 -- 领域异常统一转换为 {"error": {"code", "message", "details"?}}"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fieldsync.core.errors import FieldSyncError, InvalidStatusFlowError

log = structlog.get_logger()

# 领域错误码 -> HTTP 状态码
_ERROR_CODE_STATUS: dict[str, int] = {
    "TASK_NOT_FOUND": 404,
    "INVALID_STATUS_FLOW": 409,
    "VALIDATION_FAILED": 422,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | list | None = None,
) -> JSONResponse:
    error: dict = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


async def _fieldsync_error_handler(request: Request, exc: FieldSyncError) -> JSONResponse:
    status_code = _ERROR_CODE_STATUS.get(exc.code, 500)
    details = None
    if isinstance(exc, InvalidStatusFlowError):
        details = {
            "task_id": exc.task_id,
            "current_status": exc.current_status,
            "target_status": exc.target_status,
        }
    if status_code >= 500:
        log.error("request_failed", code=exc.code, error=exc.message)
    else:
        log.info("request_rejected", code=exc.code, error=exc.message)
    return error_response(status_code, exc.code, exc.message, details)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(
        422,
        "VALIDATION_FAILED",
        "Request validation failed",
        [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()],
    )


def register_exception_handlers(app: FastAPI) -> None:
    """注册异常处理器"""
    app.add_exception_handler(FieldSyncError, _fieldsync_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
