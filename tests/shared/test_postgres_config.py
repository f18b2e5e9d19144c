"""Tests for Postgres shared configuration and engine wiring."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from packages.governance_shared.config import load_settings
from resources.substrates.postgres.config import (
    PostgresSettings,
    resolve_postgres_settings,
)
from resources.substrates.postgres.engine import create_postgres_engine


def test_resolved_url_is_assembled_from_parts_when_url_blank() -> None:
    """Split credentials should be quoted into one psycopg URL."""
    settings = PostgresSettings(host="db", port=6543, user="gov", password="p@ss", database="gov")

    assert settings.resolved_url == "postgresql+psycopg://gov:p%40ss@db:6543/gov"


def test_explicit_url_wins_over_parts() -> None:
    """An explicit URL should be used verbatim."""
    settings = PostgresSettings(url=" postgresql+psycopg://a:b@c:5432/d ", host="ignored")

    assert settings.resolved_url == "postgresql+psycopg://a:b@c:5432/d"


def test_blank_host_without_url_is_rejected() -> None:
    """Either a URL or a host is required."""
    with pytest.raises(ValidationError, match="postgres.host is required"):
        PostgresSettings(host=" ")


def test_resolve_postgres_settings_reads_grouped_component_keys(tmp_path) -> None:
    """Postgres settings should resolve from components.substrate.postgres."""
    settings = load_settings(
        environ={
            "GOVERNANCE_COMPONENTS__SUBSTRATE__POSTGRES__URL": "postgresql+psycopg://x:y@z:5432/w",
            "GOVERNANCE_COMPONENTS__SUBSTRATE__POSTGRES__POOL_PRE_PING": "false",
        },
        config_path=tmp_path / "missing.yaml",
    )

    resolved = resolve_postgres_settings(settings)

    assert resolved.url == "postgresql+psycopg://x:y@z:5432/w"
    assert resolved.pool_pre_ping is False


def test_engine_uses_configured_pool_pre_ping(monkeypatch) -> None:
    """Engine builder should pass pool and connect settings through."""
    captured: dict[str, object] = {}

    def fake_create_engine(url: str, **kwargs: object) -> object:
        captured["url"] = url
        captured.update(kwargs)
        return object()

    import resources.substrates.postgres.engine as engine_module

    monkeypatch.setattr(engine_module, "create_engine", fake_create_engine)

    create_postgres_engine(
        PostgresSettings(url="postgresql+psycopg://a:b@c:5432/d", pool_pre_ping=False)
    )

    assert captured["url"] == "postgresql+psycopg://a:b@c:5432/d"
    assert captured["pool_pre_ping"] is False
    assert captured["connect_args"] == {"connect_timeout": 10, "sslmode": "prefer"}
