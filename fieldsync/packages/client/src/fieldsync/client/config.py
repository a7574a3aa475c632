"""ClientConfig -- 客户端同步引擎配置加载

从环境变量加载配置，非法值回退默认并记录警告，不阻塞启动。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, model_validator

log = structlog.get_logger()


class ClientConfig(BaseModel):
    """客户端配置 -- 从环境变量加载

    环境变量:
        FIELDSYNC_GATEWAY_URL: Gateway 地址（默认 http://localhost:8000）
        FIELDSYNC_LOCALE: 提示语言（he/en，默认 he）
        FIELDSYNC_REQUEST_TIMEOUT_S: 写入请求超时（秒，默认 15）
        FIELDSYNC_RECONNECT_MIN_S: 重连最小退避（秒，默认 1）
        FIELDSYNC_RECONNECT_MAX_S: 重连最大退避（秒，默认 30）
        FIELDSYNC_STALL_TIMEOUT_S: 订阅静默判定为断开的时间（秒，默认 45）
        FIELDSYNC_CONFLICT_WINDOW_S: 乐观修改后的冲突窗口（秒，默认 10）
    """

    gateway_url: str = Field(
        default="http://localhost:8000",
        description="Gateway 基础 URL",
    )
    locale: Literal["he", "en"] = Field(default="he", description="提示语言")
    request_timeout_s: float = Field(default=15.0, gt=0, description="写入请求超时（秒）")
    reconnect_min_s: float = Field(default=1.0, gt=0, description="重连最小退避（秒）")
    reconnect_max_s: float = Field(default=30.0, gt=0, description="重连最大退避（秒）")
    stall_timeout_s: float = Field(default=45.0, gt=0, description="订阅停滞超时（秒）")
    conflict_window_s: float = Field(default=10.0, ge=0, description="冲突窗口（秒）")

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "ClientConfig":
        if self.reconnect_max_s < self.reconnect_min_s:
            raise ValueError("reconnect_max_s must be >= reconnect_min_s")
        return self


_FLOAT_ENV = {
    "FIELDSYNC_REQUEST_TIMEOUT_S": "request_timeout_s",
    "FIELDSYNC_RECONNECT_MIN_S": "reconnect_min_s",
    "FIELDSYNC_RECONNECT_MAX_S": "reconnect_max_s",
    "FIELDSYNC_STALL_TIMEOUT_S": "stall_timeout_s",
    "FIELDSYNC_CONFLICT_WINDOW_S": "conflict_window_s",
}


def load_client_config() -> ClientConfig:
    """从环境变量加载客户端配置

    Returns:
        ClientConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("FIELDSYNC_GATEWAY_URL"):
        kwargs["gateway_url"] = val.rstrip("/")

    if val := os.environ.get("FIELDSYNC_LOCALE"):
        if val in ("he", "en"):
            kwargs["locale"] = val
        else:
            log.warning(
                "invalid_locale_config",
                env_var="FIELDSYNC_LOCALE",
                value=val,
                fallback="he",
            )

    for env_var, field_name in _FLOAT_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field_name] = float(val)
            except ValueError:
                log.warning(
                    "invalid_float_config",
                    env_var=env_var,
                    value=val,
                    fallback=ClientConfig.model_fields[field_name].default,
                )

    return ClientConfig(**kwargs)
