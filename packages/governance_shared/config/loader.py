"""Settings loading entrypoint with deterministic precedence.

The cascade is always:
1) explicit ``cli_params``
2) environment variables
3) YAML file (``~/.config/governance/governance.yaml`` by default)
4) model defaults

Environment variable format:
- Prefix: ``GOVERNANCE_``
- Nested keys: ``__`` separator
- Example: ``GOVERNANCE_LOGGING__LEVEL=DEBUG`` -> ``logging.level = "DEBUG"``
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Mapping

from .models import DEFAULT_CONFIG_PATH, GovernanceSettings


def load_settings(
    *,
    cli_params: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> GovernanceSettings:
    """Load typed settings by applying the standard precedence cascade.

    ``environ`` replaces ``os.environ`` and ``config_path`` replaces the
    default YAML location; both exist so callers and tests can pin inputs.
    """
    resolved_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    class _BoundSettings(GovernanceSettings):
        _config_path: ClassVar[Path] = resolved_path
        _environ: ClassVar[Mapping[str, str] | None] = environ

    return _BoundSettings(**dict(cli_params or {}))
