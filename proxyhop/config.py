from typing import Literal

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PROXYHOP_", env_file=".env", env_ignore_empty=True, extra="ignore"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Request defaults
    DEFAULT_TIMEOUT_MS: int = 30000
    DEFAULT_MAX_REDIRECTS: int = 21
    DEFAULT_PROXY_PORT: int = 8080
    DEFAULT_OUTPUT_FIELD: str = "data"

    # Connection pool defaults (per agent)
    POOL_KEEP_ALIVE: bool = True
    POOL_MAX_SOCKETS: int = 50
    POOL_MAX_FREE_SOCKETS: int = 10
    POOL_KEEPALIVE_EXPIRY: float = 5.0

    # Chunk size used when streaming binary request bodies
    BINARY_CHUNK_SIZE: int = 64 * 1024

    @computed_field  # type: ignore[prop-decorator]
    @property
    def default_timeout_seconds(self) -> float:
        return self.DEFAULT_TIMEOUT_MS / 1000

    @model_validator(mode="after")
    def _check_pool_limits(self) -> Self:
        if self.POOL_MAX_SOCKETS < 1:
            raise ValueError("POOL_MAX_SOCKETS must be at least 1")
        if self.POOL_MAX_FREE_SOCKETS > self.POOL_MAX_SOCKETS:
            raise ValueError(
                "POOL_MAX_FREE_SOCKETS cannot be larger than POOL_MAX_SOCKETS"
            )
        return self


settings = Settings()  # type: ignore
