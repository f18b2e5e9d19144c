"""Data-layer exports for Schema Governance Service."""

from services.state.schema_governance.data.memory import InMemoryGovernanceStore
from services.state.schema_governance.data.repository import PostgresGovernanceStore
from services.state.schema_governance.data.runtime import (
    SchemaGovernancePostgresRuntime,
    schema_governance_postgres_schema,
)

__all__ = [
    "InMemoryGovernanceStore",
    "PostgresGovernanceStore",
    "SchemaGovernancePostgresRuntime",
    "schema_governance_postgres_schema",
]
