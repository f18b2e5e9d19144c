"""Unit tests for configured OTel naming in public API instrumentation."""

from __future__ import annotations

import pytest

from packages.governance_shared.config import GovernanceSettings
from packages.governance_shared.logging import public_api as public_api_module


@pytest.fixture(autouse=True)
def _reset_name_cache():
    public_api_module._public_api_otel_names.cache_clear()
    yield
    public_api_module._public_api_otel_names.cache_clear()


def test_public_api_otel_names_use_defaults_when_not_configured(monkeypatch) -> None:
    """Default OTel names should resolve when observability config is absent."""
    monkeypatch.setattr(
        "packages.governance_shared.config.load_settings",
        lambda: GovernanceSettings.model_validate({}),
    )

    names = public_api_module._public_api_otel_names()

    assert names.meter_name == "governance.public_api"
    assert names.tracer_name == "governance.public_api"
    assert names.metric_calls_total == "governance_public_api_calls_total"


def test_public_api_otel_names_accept_config_overrides(monkeypatch) -> None:
    """Configured OTel names should override built-in defaults."""

    def fake_load_settings() -> GovernanceSettings:
        return GovernanceSettings.model_validate(
            {
                "observability": {
                    "public_api": {
                        "otel": {
                            "meter_name": "custom.meter",
                            "tracer_name": "custom.tracer",
                            "metric_public_api_calls_total": "custom_calls_total",
                        }
                    }
                }
            }
        )

    monkeypatch.setattr(
        "packages.governance_shared.config.load_settings", fake_load_settings
    )

    names = public_api_module._public_api_otel_names()

    assert names.meter_name == "custom.meter"
    assert names.tracer_name == "custom.tracer"
    assert names.metric_calls_total == "custom_calls_total"
