"""Component-registration discovery and import helpers."""

from __future__ import annotations

import importlib
from pathlib import Path

_DISCOVERY_ROOTS = ("services", "resources")


def discover_component_modules(repo_root: Path | None = None) -> tuple[str, ...]:
    """Return import paths for ``component.py`` modules that register a manifest."""
    root = (repo_root or Path.cwd()).resolve()
    modules: list[str] = []
    for discovery_root in _DISCOVERY_ROOTS:
        package_root = root / discovery_root
        if not package_root.exists():
            continue
        for component_file in sorted(package_root.rglob("component.py")):
            rel_component = component_file.relative_to(root)
            if "tests" in rel_component.parts:
                continue
            source = component_file.read_text(encoding="utf-8")
            if "MANIFEST" not in source or "register_component(" not in source:
                continue
            modules.append(".".join(rel_component.with_suffix("").parts))
    return tuple(modules)


def import_registered_component_modules(
    repo_root: Path | None = None,
) -> tuple[str, ...]:
    """Discover and import all component declaration modules."""
    modules = discover_component_modules(repo_root=repo_root)
    for module in modules:
        importlib.import_module(module)
    return modules
