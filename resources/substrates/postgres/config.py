"""Configuration model for shared Postgres substrate access."""

from __future__ import annotations

from typing import Literal
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.governance_shared.config import (
    GovernanceSettings,
    resolve_component_settings,
)
from resources.substrates.postgres.component import RESOURCE_COMPONENT_ID


class PostgresSettings(BaseModel):
    """Runtime settings for constructing Postgres engines and pools.

    When ``url`` is blank it is assembled from the split host/port/database
    credentials, which is the usual shape for container deployments.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = ""
    host: str = "postgres"
    port: int = Field(default=5432, gt=0)
    database: str = "governance"
    user: str = "governance"
    password: str = "governance"
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout_seconds: float = Field(default=30.0, gt=0)
    pool_pre_ping: bool = True
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    health_timeout_seconds: float = Field(default=1.0, gt=0)
    sslmode: Literal[
        "disable", "allow", "prefer", "require", "verify-ca", "verify-full"
    ] = "prefer"

    @model_validator(mode="after")
    def _require_connection_target(self) -> "PostgresSettings":
        """Require either a URL or the parts needed to build one."""
        if self.url.strip():
            return self
        for name in ("host", "database", "user"):
            if not str(getattr(self, name)).strip():
                raise ValueError(f"postgres.{name} is required when postgres.url is unset")
        return self

    @property
    def resolved_url(self) -> str:
        """Return the SQLAlchemy psycopg URL to connect with."""
        if self.url.strip():
            return self.url.strip()
        return (
            "postgresql+psycopg://"
            f"{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{quote_plus(self.database)}"
        )


def resolve_postgres_settings(settings: GovernanceSettings) -> PostgresSettings:
    """Resolve Postgres settings from ``components.substrate.postgres``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(RESOURCE_COMPONENT_ID),
        model=PostgresSettings,
    )
