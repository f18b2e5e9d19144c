"""Static checks on service-owned Alembic migrations.

Every registered service must key its tables on the schema-local ULID domain
and may only reference tables inside its own schema.
"""

from __future__ import annotations

import ast
from pathlib import Path

import pytest

from packages.governance_shared.component_loader import import_registered_component_modules
from packages.governance_shared.manifest import ServiceManifest, get_registry

_REPO_ROOT = Path(__file__).resolve().parents[2]


def _registered_services() -> tuple[ServiceManifest, ...]:
    import_registered_component_modules(repo_root=_REPO_ROOT)
    registry = get_registry()
    registry.assert_valid()
    return registry.list_services()


def _migration_files(service: ServiceManifest) -> list[Path]:
    files: set[Path] = set()
    for module_root in service.module_roots:
        versions = _REPO_ROOT.joinpath(*str(module_root).split(".")) / "migrations" / "versions"
        if versions.exists():
            files.update(versions.glob("*.py"))
    return sorted(files)


def _attr_call(node: ast.Call, owner: str, name: str) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and isinstance(func.value, ast.Name)
        and func.value.id == owner
        and func.attr == name
    )


def _keyword(node: ast.Call, name: str) -> ast.AST | None:
    for keyword in node.keywords:
        if keyword.arg == name:
            return keyword.value
    return None


def _template(expr: ast.AST) -> str | None:
    """Render literal and f-string expressions with ``{name}`` placeholders."""
    if isinstance(expr, ast.Constant) and isinstance(expr.value, str):
        return expr.value
    if isinstance(expr, ast.Name):
        return f"{{{expr.id}}}"
    if isinstance(expr, ast.JoinedStr):
        parts: list[str] = []
        for value in expr.values:
            if isinstance(value, ast.Constant) and isinstance(value.value, str):
                parts.append(value.value)
            elif isinstance(value, ast.FormattedValue) and isinstance(value.value, ast.Name):
                parts.append(f"{{{value.value.id}}}")
            else:
                return None
        return "".join(parts)
    return None


def _is_ulid_type(expr: ast.AST) -> bool:
    if not isinstance(expr, ast.Call) or not isinstance(expr.func, ast.Name):
        return False
    name = expr.func.id.lower()
    return "ulid" in name and "domain" in name


def _table_violations(
    call: ast.Call, *, path: Path, service: ServiceManifest
) -> list[str]:
    violations: list[str] = []
    schema_expr = _keyword(call, "schema")
    if schema_expr is None:
        return [f"{path}:{call.lineno}: create_table must set schema="]
    allowed = {service.schema_name, _template(schema_expr)}

    columns: dict[str, ast.AST] = {}
    primary: set[str] = set()
    targets: list[ast.AST] = []
    for arg in call.args[1:]:
        if not isinstance(arg, ast.Call):
            continue
        if _attr_call(arg, "sa", "Column") and len(arg.args) > 1:
            name = arg.args[0]
            if isinstance(name, ast.Constant) and isinstance(name.value, str):
                columns[name.value] = arg.args[1]
                primary_key = _keyword(arg, "primary_key")
                if isinstance(primary_key, ast.Constant) and primary_key.value is True:
                    primary.add(name.value)
        elif _attr_call(arg, "sa", "ForeignKeyConstraint") and len(arg.args) > 1:
            remote = arg.args[1]
            if isinstance(remote, (ast.List, ast.Tuple)):
                targets.extend(remote.elts)

    if not primary:
        violations.append(f"{path}:{call.lineno}: table declares no primary key")
    for column in sorted(primary):
        if not _is_ulid_type(columns[column]):
            violations.append(
                f"{path}:{call.lineno}: primary key '{column}' must use the ULID domain"
            )
    for target in targets:
        rendered = _template(target)
        if rendered is None or rendered.count(".") < 2:
            violations.append(f"{path}:{target.lineno}: FK target must be schema.table.column")
        elif rendered.split(".")[0] not in allowed:
            violations.append(f"{path}:{target.lineno}: cross-schema FK to '{rendered}'")
    return violations


def test_registered_services_ship_migrations() -> None:
    """Each registered service owns at least one migration revision."""
    services = _registered_services()

    assert services
    for service in services:
        assert _migration_files(service), service.id


@pytest.mark.parametrize("service", _registered_services(), ids=lambda item: str(item.id))
def test_migrations_key_tables_on_local_ulids(service: ServiceManifest) -> None:
    """Tables use ULID primary keys and only reference their own schema."""
    violations: list[str] = []
    for path in _migration_files(service):
        module = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        for node in ast.walk(module):
            if isinstance(node, ast.Call) and _attr_call(node, "op", "create_table"):
                violations.extend(_table_violations(node, path=path, service=service))

    assert not violations, "\n".join(violations)
