"""Client and demo server configuration via environment variables (SSELINK_ prefix) or defaults."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class SSELinkConfig(BaseSettings):
    retry_seconds: float = 1.0
    connect_timeout: float = 10.0
    read_timeout: float | None = None  # None: wait on a quiet stream forever
    log_dir: str = ""
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8080
    tick_interval: float = 1.0

    model_config = {"env_prefix": "SSELINK_"}
