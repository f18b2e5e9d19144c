"""Shared fixtures for integration-oriented test modules."""

from __future__ import annotations

import pytest

from packages.governance_shared.config import GovernanceSettings, load_settings
from resources.substrates.postgres.config import resolve_postgres_settings
from tests.integration.helpers import real_provider_tests_enabled


@pytest.fixture(scope="session")
def env_settings() -> GovernanceSettings:
    """Return loaded settings snapshot for fixture consumers."""
    return load_settings()


@pytest.fixture(scope="session")
def postgres_engine(env_settings: GovernanceSettings):
    """Return SQLAlchemy engine for real-provider tests or skip if unavailable."""
    if not real_provider_tests_enabled():
        pytest.skip("real-provider integration tests disabled")
    from sqlalchemy import create_engine

    engine = create_engine(resolve_postgres_settings(env_settings).resolved_url)
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"postgres unavailable for integration tests: {exc}")
    return engine
