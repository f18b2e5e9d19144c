"""Pydantic settings for Schema Governance Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.governance_shared.config import (
    GovernanceSettings,
    resolve_component_settings,
)
from services.state.schema_governance.component import SERVICE_COMPONENT_ID


class SchemaGovernanceSettings(BaseModel):
    """Schema Governance Service runtime behavior settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    justification_min_length: int = Field(default=50, ge=1)
    justification_max_length: int = Field(default=5000, gt=0)
    max_description_length: int = Field(default=5000, gt=0)
    max_impact_analysis_length: int = Field(default=10000, gt=0)
    max_approver_name_length: int = Field(default=200, gt=0)
    max_data_source_name_length: int = Field(default=200, gt=0)
    list_limit_default: int = Field(default=100, gt=0)
    list_limit_max: int = Field(default=500, gt=0)
    audit_page_size_default: int = Field(default=50, gt=0)
    audit_page_size_max: int = Field(default=500, gt=0)
    audit_publish_attempts: int = Field(default=3, ge=1)
    ai_actor_id: str = Field(default="ai-system", min_length=1)
    ai_actor_name: str = Field(default="AI System", min_length=1)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "SchemaGovernanceSettings":
        """Require ordered min/max pairs."""
        if self.justification_min_length > self.justification_max_length:
            raise ValueError(
                "justification_min_length must be <= justification_max_length"
            )
        if self.list_limit_default > self.list_limit_max:
            raise ValueError("list_limit_default must be <= list_limit_max")
        if self.audit_page_size_default > self.audit_page_size_max:
            raise ValueError("audit_page_size_default must be <= audit_page_size_max")
        return self


def resolve_schema_governance_settings(
    settings: GovernanceSettings,
) -> SchemaGovernanceSettings:
    """Resolve service settings from ``components.service.schema_governance``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=SchemaGovernanceSettings,
    )
