from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


IDEMPOTENCY_BACKENDS = ("memory", "database")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL")

    basic_auth_username: str = Field(..., alias="BASIC_AUTH_USERNAME")
    basic_auth_password: str = Field(..., alias="BASIC_AUTH_PASSWORD")

    cors_origins: str | None = Field(None, alias="CORS_ORIGINS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # --- Maker-checker ---
    privileged_roles: str = Field("admin,manager", alias="PRIVILEGED_ROLES")
    default_actor_role: str = Field("operator", alias="DEFAULT_ACTOR_ROLE")
    approval_stats_window_days: int = Field(30, ge=1, alias="APPROVAL_STATS_WINDOW_DAYS")
    transaction_page_size_max: int = Field(100, ge=1, alias="TRANSACTION_PAGE_SIZE_MAX")

    # --- Idempotency ---
    idempotency_backend: str = Field("memory", alias="IDEMPOTENCY_BACKEND")
    idempotency_ttl_seconds: int = Field(86400, ge=1, alias="IDEMPOTENCY_TTL_SECONDS")
    idempotency_processing_ttl_seconds: int = Field(60, ge=1, alias="IDEMPOTENCY_PROCESSING_TTL_SECONDS")
    # Comma-separated path prefixes where the key header is mandatory.
    idempotency_required_paths: str | None = Field(None, alias="IDEMPOTENCY_REQUIRED_PATHS")

    @field_validator("privileged_roles", mode="before")
    @classmethod
    def _normalize_privileged_roles(cls, v: object) -> object:
        if isinstance(v, str):
            roles: list[str] = []
            for part in v.split(","):
                role = part.strip().lower()
                if role and role not in roles:
                    roles.append(role)
            return ",".join(roles)
        return v

    @field_validator("default_actor_role", mode="before")
    @classmethod
    def _normalize_default_actor_role(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower() or "operator"
        return v

    @field_validator("idempotency_backend", mode="before")
    @classmethod
    def _validate_idempotency_backend(cls, v: object) -> object:
        if isinstance(v, str):
            backend = v.strip().lower()
            if backend not in IDEMPOTENCY_BACKENDS:
                raise ValueError(f"IDEMPOTENCY_BACKEND must be one of {IDEMPOTENCY_BACKENDS}")
            return backend
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper() or "INFO"
        return v

    @property
    def privileged_role_set(self) -> frozenset[str]:
        return frozenset(r for r in self.privileged_roles.split(",") if r)

    @property
    def idempotency_required_prefixes(self) -> tuple[str, ...]:
        if not self.idempotency_required_paths:
            return ()
        return tuple(p.strip() for p in self.idempotency_required_paths.split(",") if p.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()
