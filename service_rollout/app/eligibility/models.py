"""
Eligibility data models for the Rollout Service.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field


# Well-known attribute names
ALLOWLIST_ID_ATTRIBUTE = "allowlist_id"
CHECK_EXTERNAL_ATTRIBUTE = "check_external"
REGION_ATTRIBUTE = "region"
GROUPS_ATTRIBUTE = "groups"
PURCHASE_HISTORY_ATTRIBUTE = "purchase_history"


@dataclass(frozen=True)
class EligibilityCriteria:
    """Snapshot of the subject being evaluated. Built fresh per call."""
    subject_id: int
    subject_type: Optional[str] = None
    behavioral_attributes: Mapping[str, Any] = field(default_factory=dict)
    contextual_attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self, "behavioral_attributes", MappingProxyType(dict(self.behavioral_attributes or {}))
        )
        object.__setattr__(
            self, "contextual_attributes", MappingProxyType(dict(self.contextual_attributes or {}))
        )

    def context_summary(self) -> Dict[str, Any]:
        """Non-sensitive description of the criteria for comparison contexts."""
        return {
            "subject_id": self.subject_id,
            "subject_type": self.subject_type,
            "has_behavioral_data": len(self.behavioral_attributes) > 0,
            "has_contextual_data": len(self.contextual_attributes) > 0,
        }


@dataclass(frozen=True)
class Verdict:
    """Eligibility decision with a diagnostic reason."""
    eligible: bool
    reason: str

    @classmethod
    def allow(cls, reason: str) -> "Verdict":
        return cls(eligible=True, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> "Verdict":
        return cls(eligible=False, reason=reason)


class EligibilityCheckRequest(BaseModel):
    """Request model for an eligibility check."""
    subject_id: int = Field(..., description="Subject identifier used for bucketing")
    subject_type: Optional[str] = Field(None, description="Subject type, e.g. Premium")
    behavioral_attributes: Dict[str, Any] = Field(default_factory=dict, description="Behavioral attributes")
    contextual_attributes: Dict[str, Any] = Field(default_factory=dict, description="Contextual attributes")

    def to_criteria(self) -> EligibilityCriteria:
        return EligibilityCriteria(
            subject_id=self.subject_id,
            subject_type=self.subject_type,
            behavioral_attributes=self.behavioral_attributes,
            contextual_attributes=self.contextual_attributes,
        )


class EligibilityCheckResponse(BaseModel):
    """Response model for an eligibility check."""
    eligible: bool = Field(..., description="Whether the subject takes part in the comparison")
    reason: str = Field(..., description="Reason for the decision")
