"""Component declaration for Schema Governance Service."""

from __future__ import annotations

from collections.abc import Mapping

from packages.governance_shared.config import GovernanceSettings
from packages.governance_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ServiceManifest,
    register_component,
)

SERVICE_COMPONENT_ID = ComponentId("service_schema_governance")

MANIFEST = register_component(
    ServiceManifest(
        id=SERVICE_COMPONENT_ID,
        layer=1,
        system="state",
        module_roots=frozenset({ModuleRoot("services.state.schema_governance")}),
        public_api_roots=frozenset(
            {ModuleRoot("services.state.schema_governance.service")}
        ),
        owns_resources=frozenset(),
    )
)


def build_component(
    *, settings: GovernanceSettings, components: Mapping[str, object]
) -> object:
    """Build concrete runtime instance for this registered service component."""
    del components
    from services.state.schema_governance.service import (
        build_schema_governance_service,
    )

    return build_schema_governance_service(settings=settings)
