"""Client configuration via environment variables (SSELINK_ prefix) or defaults."""

from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings

from .session.retry import RetryPolicy
from .stream.transport import TransportOptions


class ClientConfig(BaseSettings):
    url: str = "http://127.0.0.1:3000/api/v1/sse"
    method: str = "POST"
    headers: dict[str, str] = {}
    body: Any = None
    cookies: dict[str, str] = {}
    connect_timeout: float = 10.0
    read_timeout: float | None = None
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_retries: int = 3
    max_delay: float = 30.0
    log_dir: str | None = None
    log_level: str = "INFO"
    peer_host: str = "127.0.0.1"
    peer_port: int = 3000
    peer_interval: float = 0.5

    model_config = {"env_prefix": "SSELINK_"}

    def transport_options(self) -> TransportOptions:
        return TransportOptions(
            url=self.url,
            method=self.method,
            headers=dict(self.headers),
            body=self.body,
            cookies=dict(self.cookies),
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay=self.base_delay,
            backoff_factor=self.backoff_factor,
            max_retries=self.max_retries,
            max_delay=self.max_delay,
        )
