"""日志与 APM 初始化

structlog 事件统一经标准库 logging 的 ProcessorFormatter 输出，
uvicorn / aiosqlite / sse-starlette 的日志与业务日志使用同一个渲染器。
Logfire 只在 LOGFIRE_SEND_TO_LOGFIRE=true 时启用。
"""

import logging
import os

import structlog
from fastapi import FastAPI

# 第三方库日志默认只保留 WARNING 以上
_NOISY_LOGGERS = ("aiosqlite", "sse_starlette", "httpx")


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", "fieldsync-gateway")
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog

    Args:
        log_format: "json" 或 "dev"，缺省读 FIELDSYNC_LOG_FORMAT（默认 dev）
        log_level: 日志级别，缺省读 FIELDSYNC_LOG_LEVEL（默认 INFO）
    """
    log_format = (log_format or os.environ.get("FIELDSYNC_LOG_FORMAT", "dev")).lower()
    log_level = (log_level or os.environ.get("FIELDSYNC_LOG_LEVEL", "INFO")).upper()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
    ]

    if log_format == "json":
        render_chain: list[structlog.types.Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        render_chain = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *render_chain,
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app: FastAPI) -> bool:
    """按 LOGFIRE_SEND_TO_LOGFIRE 启用 Logfire（需要 LOGFIRE_TOKEN 和 apm 可选依赖）

    Returns:
        是否已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure(service_name="fieldsync-gateway")
        logfire.instrument_fastapi(app)
    except Exception:
        # 失败时只保留本地日志
        structlog.get_logger().warning("logfire_init_failed", exc_info=True)
        return False
    return True
