"""Component declaration for the shared Postgres substrate."""

from __future__ import annotations

from packages.governance_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ResourceManifest,
    register_component,
)

RESOURCE_COMPONENT_ID = ComponentId("substrate_postgres")

MANIFEST = register_component(
    ResourceManifest(
        id=RESOURCE_COMPONENT_ID,
        layer=0,
        system="state",
        module_roots=frozenset({ModuleRoot("resources.substrates.postgres")}),
        kind="substrate",
        owner_service_id=None,
    )
)
