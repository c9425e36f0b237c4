"""
forge-server — Environment Configuration
==========================================

What:  Process-level settings read from environment variables (or `.env`).
How:   pydantic-settings validates types and ranges when Settings() is built;
       server_options() and database_options() translate the flat environment
       into the typed option models the shell and database service take.

Examples:
    SERVER_NAME=Orders SERVER_PORT=8080 ENABLE_GLOBAL_RATE_LIMIT=true
    DATABASE_URL=postgresql+asyncpg://user:secret@db:5432/orders
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from forge_server.database import DatabaseOptions
from forge_server.schemas.options import (
    CorsOptions,
    CorsSettings,
    FileUploadOptions,
    HealthCheckOptions,
    RateLimitOptions,
    SecurityHeadersOptions,
    ServerOptions,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a development default. The database is optional: leave
    DATABASE_URL unset and no pool is created.
    """

    # ── Server ────────────────────────────────────────────────────────────
    server_name: str = Field(default="Server", min_length=1)
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=5000, ge=0, le=65535)

    # ── Rate limiting ─────────────────────────────────────────────────────
    enable_global_rate_limit: bool = Field(default=False)
    global_rate_limit_window_ms: int = Field(default=1_000, ge=1)
    global_rate_limit_max: int = Field(default=10, ge=1)

    # ── CORS / security headers ───────────────────────────────────────────
    cors_disabled: bool = Field(default=False)
    # Comma-separated; "*" allows any origin
    cors_origins: str = Field(default="*")
    security_headers_disabled: bool = Field(default=False)

    # ── Uploads / health ──────────────────────────────────────────────────
    enable_file_upload: bool = Field(default=False)
    max_upload_size: Optional[int] = Field(default=None, ge=1)
    health_check_disabled: bool = Field(default=False)
    health_check_path: Optional[str] = Field(default=None)

    # ── Logging ───────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Database ──────────────────────────────────────────────────────────
    database_url: Optional[str] = Field(default=None)
    db_pool_size: int = Field(default=20, ge=1, le=100)
    db_max_overflow: int = Field(default=10, ge=0, le=50)
    db_pool_pre_ping: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def server_options(self) -> ServerOptions:
        return ServerOptions(
            server_name=self.server_name,
            host=self.server_host,
            port=self.server_port,
            enable_global_rate_limiter=self.enable_global_rate_limit,
            global_rate_limiter_options=RateLimitOptions(
                window_ms=self.global_rate_limit_window_ms,
                max=self.global_rate_limit_max,
                standard_headers=False,
                legacy_headers=False,
            ),
            enable_file_upload=self.enable_file_upload,
            file_upload=FileUploadOptions(max_file_size=self.max_upload_size),
            cors=CorsSettings(
                disable=self.cors_disabled,
                options=CorsOptions(allow_origins=self.cors_origins_list),
            ),
            security_headers=SecurityHeadersOptions(disable_all=self.security_headers_disabled),
            health_check=HealthCheckOptions(
                disable=self.health_check_disabled,
                route_path=self.health_check_path,
            ),
        )

    def database_options(self) -> Optional[DatabaseOptions]:
        if not self.database_url:
            return None
        return DatabaseOptions(
            url=self.database_url,
            pool_size=self.db_pool_size,
            max_overflow=self.db_max_overflow,
            pool_pre_ping=self.db_pool_pre_ping,
            echo=self.log_level == "DEBUG",
        )
