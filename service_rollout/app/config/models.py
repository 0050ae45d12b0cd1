"""
Configuration models for the Rollout Service.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, Field


def _as_set(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    return frozenset(v.strip() for v in values if v and v.strip())


@dataclass(frozen=True)
class RolloutConfig:
    """Rollout switch, traffic percentage and publication flag."""
    enabled: bool = True
    percentage: int = 0
    publish_results: bool = True


@dataclass(frozen=True)
class EligibilityConfig:
    """Layered eligibility policy settings.

    Set members are compared case-insensitively by the policy.
    """
    criteria_validation_active: bool = False
    multiple_criteria_enabled: bool = False
    allowed_subject_types: FrozenSet[str] = field(default_factory=frozenset)
    allowed_groups: FrozenSet[str] = field(default_factory=frozenset)
    allowed_allowlist_ids: FrozenSet[str] = field(default_factory=frozenset)
    allowed_regions: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "allowed_subject_types", _as_set(self.allowed_subject_types))
        object.__setattr__(self, "allowed_groups", _as_set(self.allowed_groups))
        object.__setattr__(self, "allowed_allowlist_ids", _as_set(self.allowed_allowlist_ids))
        object.__setattr__(self, "allowed_regions", _as_set(self.allowed_regions))


class RolloutConfigResponse(BaseModel):
    """Response model for rollout configuration."""
    enabled: bool = Field(..., description="Whether the rollout is enabled")
    percentage: int = Field(..., description="Share of subjects routed through the comparison")
    publish_results: bool = Field(..., description="Whether comparison records reach the sink")


class RolloutConfigUpdateRequest(BaseModel):
    """Request model for updating rollout configuration."""
    enabled: Optional[bool] = Field(None, description="Enable or disable the rollout")
    percentage: Optional[int] = Field(None, description="Traffic percentage, 0 to 100")
    publish_results: Optional[bool] = Field(None, description="Forward comparison records to the sink")


class EligibilityConfigModel(BaseModel):
    """Request/response model for eligibility configuration."""
    criteria_validation_active: bool = Field(False, description="Evaluate layered criteria")
    multiple_criteria_enabled: bool = Field(False, description="Require functional, behavioral and contextual criteria")
    allowed_subject_types: List[str] = Field(default_factory=list, description="Allowed subject types")
    allowed_groups: List[str] = Field(default_factory=list, description="Groups admitted when any subject group matches")
    allowed_allowlist_ids: List[str] = Field(default_factory=list, description="Allowed identifiers")
    allowed_regions: List[str] = Field(default_factory=list, description="Allowed regions")

    @classmethod
    def from_config(cls, config: EligibilityConfig) -> "EligibilityConfigModel":
        return cls(
            criteria_validation_active=config.criteria_validation_active,
            multiple_criteria_enabled=config.multiple_criteria_enabled,
            allowed_subject_types=sorted(config.allowed_subject_types),
            allowed_groups=sorted(config.allowed_groups),
            allowed_allowlist_ids=sorted(config.allowed_allowlist_ids),
            allowed_regions=sorted(config.allowed_regions),
        )

    def to_config(self) -> EligibilityConfig:
        return EligibilityConfig(
            criteria_validation_active=self.criteria_validation_active,
            multiple_criteria_enabled=self.multiple_criteria_enabled,
            allowed_subject_types=frozenset(self.allowed_subject_types),
            allowed_groups=frozenset(self.allowed_groups),
            allowed_allowlist_ids=frozenset(self.allowed_allowlist_ids),
            allowed_regions=frozenset(self.allowed_regions),
        )


class PublisherConfigRequest(BaseModel):
    """Request model for switching the result publisher."""
    publisher: str = Field(..., description="Comma-separated publishers: console, log, redis, null")
    background: Optional[bool] = Field(None, description="Deliver through the background pool")


class PublisherConfigResponse(BaseModel):
    """Response model describing the active result publisher."""
    publisher: Optional[str] = Field(None, description="Active publisher setting, unset when injected")
    implementation: str = Field(..., description="Publisher class handling results")
