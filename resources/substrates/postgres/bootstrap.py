"""Pre-migration bootstrap for service schemas and shared SQL primitives."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Connection, text

from packages.governance_shared.component_loader import (
    import_registered_component_modules,
)
from packages.governance_shared.config import GovernanceSettings, load_settings
from packages.governance_shared.ids import ULID_DOMAIN_NAME
from packages.governance_shared.logging import get_logger
from packages.governance_shared.manifest import get_registry
from resources.substrates.postgres.config import resolve_postgres_settings
from resources.substrates.postgres.engine import create_postgres_engine

_LOGGER = get_logger(__name__)

# Postgres has no CREATE DOMAIN IF NOT EXISTS, so guard on pg_type.
ULID_DOMAIN_DEFINITION_SQL = """
DO $$
BEGIN
    IF NOT EXISTS (
        SELECT 1 FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        WHERE t.typname = '{domain}' AND n.nspname = '{schema}'
    ) THEN
        CREATE DOMAIN {schema}.{domain} AS bytea CHECK (octet_length(VALUE) = 16);
    END IF;
END
$$;
"""


@dataclass(frozen=True)
class BootstrapResult:
    """Summary of pre-migration bootstrap actions."""

    imported_components: tuple[str, ...]
    provisioned_schemas: tuple[str, ...]


def bootstrap_service_schemas(
    settings: GovernanceSettings | None = None,
) -> BootstrapResult:
    """Provision all registered service schemas and shared SQL domains."""
    resolved_settings = load_settings() if settings is None else settings
    postgres_settings = resolve_postgres_settings(resolved_settings)

    imported = import_registered_component_modules()
    registry = get_registry()
    registry.assert_valid()
    services = registry.list_services()
    if len(services) == 0:
        raise RuntimeError("no registered services discovered; refusing schema bootstrap")

    engine = create_postgres_engine(postgres_settings)
    provisioned: list[str] = []
    try:
        with engine.begin() as connection:
            for service in services:
                provision_schema(connection=connection, schema=service.schema_name)
                provisioned.append(service.schema_name)
    finally:
        engine.dispose()

    _LOGGER.info("provisioned %d service schema(s)", len(provisioned))
    return BootstrapResult(
        imported_components=imported,
        provisioned_schemas=tuple(provisioned),
    )


def provision_schema(*, connection: Connection, schema: str) -> None:
    """Create one service schema and its schema-local ULID domain."""
    connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
    connection.execute(
        text(ULID_DOMAIN_DEFINITION_SQL.format(schema=schema, domain=ULID_DOMAIN_NAME))
    )
