"""Checks for public API invocation instrumentation.

The static check enforces that each registered service implementation
decorates every public method declared in its Service API contract. The
behavior checks exercise the decorator itself with in-memory concerns.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path

import pytest

from packages.governance_shared.component_loader import (
    import_registered_component_modules,
)
from packages.governance_shared.envelope import EnvelopeKind, failure, new_meta, success
from packages.governance_shared.errors import validation_error
from packages.governance_shared.logging import (
    CompletionContext,
    InvocationContext,
    public_api_instrumented,
)
from packages.governance_shared.manifest import ServiceManifest, get_registry

_REPO_ROOT = Path(__file__).resolve().parents[2]


class _RecordingConcern:
    """Concern capturing every lifecycle event."""

    def __init__(self) -> None:
        self.invocations: list[InvocationContext] = []
        self.completions: list[CompletionContext] = []

    def on_invocation(self, context: InvocationContext) -> None:
        self.invocations.append(context)

    def on_completion(self, context: CompletionContext) -> None:
        self.completions.append(context)


class _BrokenConcern:
    """Concern whose hooks always raise."""

    def on_invocation(self, context: InvocationContext) -> None:
        raise RuntimeError("invocation hook failed")

    def on_completion(self, context: CompletionContext) -> None:
        raise RuntimeError("completion hook failed")


def _meta():
    return new_meta(
        kind=EnvelopeKind.COMMAND,
        source="test",
        principal="operator",
        trace_id="trace-1",
        envelope_id="env-1",
    )


def test_registered_services_decorate_public_api_methods() -> None:
    """Require instrumentation on all public methods declared in Service APIs."""
    failures: list[str] = []
    for service in _load_services():
        contract_methods = _service_contract_public_methods(service)
        missing = sorted(contract_methods - _service_decorated_methods(service))
        if missing:
            failures.append(f"{service.id}: {missing}")

    assert not failures, (
        "Missing @public_api_instrumented on Service public API methods:\n"
        + "\n".join(failures)
    )


def test_decorator_reports_references_and_envelope_outcome() -> None:
    """Invocation events carry meta ids and references; completion the errors."""
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_schema_governance",
        id_fields=("schema_version_id",),
        concerns=(concern,),
        telemetry=False,
    )
    def approve(*, meta, schema_version_id: str):
        return failure(
            meta=meta,
            errors=[validation_error("bad layer", code="INVALID_ARGUMENT")],
        )

    result = approve(meta=_meta(), schema_version_id="01ARZ3NDEKTSV4RRFFQ69G5FAV")

    assert result.ok is False
    invocation = concern.invocations[0]
    assert invocation.api_name == "approve"
    assert invocation.trace_id == "trace-1"
    assert invocation.references == {"schema_version_id": "01ARZ3NDEKTSV4RRFFQ69G5FAV"}
    completion = concern.completions[0]
    assert completion.success is False
    assert completion.errors == ["INVALID_ARGUMENT: bad layer"]
    assert completion.error_categories == ["validation"]


def test_decorator_reraises_and_reports_internal_failure() -> None:
    """Exceptions propagate after an internal-category completion event."""
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_schema_governance",
        concerns=(concern,),
        telemetry=False,
    )
    def apply(*, meta):
        raise RuntimeError("store exploded")

    with pytest.raises(RuntimeError, match="store exploded"):
        apply(meta=_meta())

    assert concern.completions[0].success is False
    assert concern.completions[0].errors == ["RuntimeError: store exploded"]
    assert concern.completions[0].error_categories == ["internal"]


def test_concern_failures_are_isolated(caplog: pytest.LogCaptureFixture) -> None:
    """A raising concern must not break the call or the other concerns."""
    recording = _RecordingConcern()
    logger = logging.getLogger("tests.public_api")

    @public_api_instrumented(
        component_id="service_schema_governance",
        concerns=(_BrokenConcern(), recording),
        logger=logger,
        telemetry=False,
    )
    def health(*, meta):
        return success(meta=meta, payload={"ready": True})

    with caplog.at_level("INFO", logger="tests.public_api"):
        result = health(meta=_meta())

    assert result.ok is True
    assert len(recording.completions) == 1
    messages = [record.getMessage() for record in caplog.records]
    assert "Public API invocation" in messages
    assert "Public API completion" in messages
    assert messages.count("Public API instrumentation concern failed") == 2


def test_decorator_requires_at_least_one_concern() -> None:
    """Disabling every concern is a configuration error."""
    with pytest.raises(ValueError, match="at least one concern"):
        public_api_instrumented(component_id="service_schema_governance", telemetry=False)


def _load_services() -> tuple[ServiceManifest, ...]:
    """Import component manifests and return registered service manifests."""
    import_registered_component_modules(repo_root=_REPO_ROOT)
    registry = get_registry()
    registry.assert_valid()
    return registry.list_services()


def _service_contract_public_methods(service: ServiceManifest) -> set[str]:
    """Return public method names declared by service API contract classes."""
    names: set[str] = set()
    for root in sorted(str(item) for item in service.public_api_roots):
        file_path = _module_to_file(root)
        if file_path is None:
            continue
        module = ast.parse(file_path.read_text(encoding="utf-8"))
        for node in module.body:
            if not isinstance(node, ast.ClassDef) or not _looks_like_service_contract(node):
                continue
            for child in node.body:
                if isinstance(child, ast.FunctionDef) and not child.name.startswith("_"):
                    names.add(child.name)
    return names


def _service_decorated_methods(service: ServiceManifest) -> set[str]:
    """Return public method names decorated in service implementation modules."""
    names: set[str] = set()
    for root in sorted(str(item) for item in service.module_roots):
        file_path = _module_to_file(f"{root}.implementation")
        if file_path is None:
            continue
        module = ast.parse(file_path.read_text(encoding="utf-8"))
        for node in module.body:
            if not isinstance(node, ast.ClassDef):
                continue
            for child in node.body:
                if not isinstance(child, ast.FunctionDef) or child.name.startswith("_"):
                    continue
                if _has_public_api_instrumented(child):
                    names.add(child.name)
    return names


def _module_to_file(module: str) -> Path | None:
    """Resolve one Python module name to a repo-relative file path."""
    path = _REPO_ROOT / (module.replace(".", "/") + ".py")
    return path if path.exists() else None


def _looks_like_service_contract(node: ast.ClassDef) -> bool:
    """Return True when a class appears to define a Service API contract."""
    if node.name.endswith("Service"):
        return True
    for child in node.body:
        if not isinstance(child, ast.FunctionDef):
            continue
        for decorator in child.decorator_list:
            if isinstance(decorator, ast.Name) and decorator.id == "abstractmethod":
                return True
    return False


def _has_public_api_instrumented(node: ast.FunctionDef) -> bool:
    """Return whether method decorators include ``@public_api_instrumented``."""
    for decorator in node.decorator_list:
        if isinstance(decorator, ast.Name) and decorator.id == "public_api_instrumented":
            return True
        if (
            isinstance(decorator, ast.Call)
            and isinstance(decorator.func, ast.Name)
            and decorator.func.id == "public_api_instrumented"
        ):
            return True
    return False
