"""Tests for pydantic-settings-backed shared configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from packages.governance_shared.config import load_settings, resolve_component_settings
from resources.substrates.postgres.config import PostgresSettings
from services.state.schema_governance.component import SERVICE_COMPONENT_ID
from services.state.schema_governance.config import (
    SchemaGovernanceSettings,
    resolve_schema_governance_settings,
)


def test_load_settings_uses_governance_precedence_cascade(tmp_path: Path) -> None:
    """Init params should override env, env should override YAML, then defaults."""
    config_file = tmp_path / "governance.yaml"
    config_file.write_text(
        "\n".join(
            [
                "logging:",
                "  level: WARNING",
                "components:",
                "  substrate:",
                "    postgres:",
                "      pool_size: 7",
                "  service:",
                "    schema_governance:",
                "      justification_min_length: 80",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(
        cli_params={"logging": {"level": "DEBUG"}},
        environ={
            "GOVERNANCE_LOGGING__LEVEL": "ERROR",
            "GOVERNANCE_COMPONENTS__SUBSTRATE__POSTGRES__POOL_SIZE": "9",
        },
        config_path=config_file,
    )

    postgres = resolve_component_settings(
        settings=settings,
        component_id="substrate_postgres",
        model=PostgresSettings,
    )
    governance = resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=SchemaGovernanceSettings,
    )

    assert settings.logging.level == "DEBUG"
    assert postgres.pool_size == 9
    assert governance.justification_min_length == 80
    assert governance.list_limit_max == 500


def test_load_settings_uses_model_defaults_when_sources_missing(tmp_path: Path) -> None:
    """Settings should fall back to model defaults when env and YAML are absent."""
    settings = load_settings(config_path=tmp_path / "governance.yaml", environ={})

    governance = resolve_schema_governance_settings(settings)

    assert settings.logging.service == "schema-governance"
    assert settings.logging.level == "INFO"
    assert governance.justification_min_length == 50
    assert governance.audit_publish_attempts == 3
    assert governance.ai_actor_id == "ai-system"


def test_flat_component_keys_are_rejected(tmp_path: Path) -> None:
    """Components must be grouped under their kind namespace."""
    config_file = tmp_path / "governance.yaml"
    config_file.write_text(
        "components:\n  substrate_postgres:\n    pool_size: 3\n",
        encoding="utf-8",
    )

    with pytest.raises(ValidationError, match="components.substrate.postgres"):
        load_settings(config_path=config_file, environ={})


def test_resolve_component_settings_rejects_unknown_kind(tmp_path: Path) -> None:
    """Only service and substrate component ids carry settings."""
    settings = load_settings(config_path=tmp_path / "governance.yaml", environ={})

    with pytest.raises(ValueError, match="unsupported component id"):
        resolve_component_settings(
            settings=settings,
            component_id="adapter_signal",
            model=PostgresSettings,
        )


def test_service_settings_require_ordered_bounds() -> None:
    """Minimum lengths and defaults must not exceed their maxima."""
    with pytest.raises(ValidationError, match="justification_min_length"):
        SchemaGovernanceSettings(justification_min_length=100, justification_max_length=60)
    with pytest.raises(ValidationError, match="list_limit_default"):
        SchemaGovernanceSettings(list_limit_default=600)
