"""
Experiment data models for the Rollout Service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

CONTROL = "control"
CANDIDATE = "candidate"


@dataclass
class Observation:
    """Outcome of one execution: a value or the exception it raised."""
    name: str
    value: Any = None
    duration_ns: int = 0
    exception: Optional[BaseException] = None
    cleaned_value: Any = None

    @property
    def raised(self) -> bool:
        return self.exception is not None

    @property
    def duration_ms(self) -> float:
        return self.duration_ns / 1_000_000

    def unwrap(self) -> Any:
        """Return the value, or re-raise the recorded exception unchanged."""
        if self.exception is not None:
            raise self.exception
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "value": self.cleaned_value,
            "duration_ms": self.duration_ms,
            "error": None,
        }
        if self.exception is not None:
            data["error"] = {
                "type": type(self.exception).__name__,
                "message": str(self.exception),
            }
        return data


@dataclass
class ComparisonResult:
    """Comparison record handed to a result publisher."""
    experiment_name: str
    control: Observation
    candidates: Tuple[Observation, ...]
    matched: bool
    contexts: Dict[str, Any] = field(default_factory=dict)

    @property
    def candidate(self) -> Observation:
        return self.candidates[0]

    @property
    def control_raised(self) -> bool:
        return self.control.raised

    @property
    def candidate_raised(self) -> bool:
        return any(observation.raised for observation in self.candidates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment": self.experiment_name,
            "matched": self.matched,
            "control_raised": self.control_raised,
            "candidate_raised": self.candidate_raised,
            "control": self.control.to_dict(),
            "candidates": [observation.to_dict() for observation in self.candidates],
            "contexts": dict(self.contexts),
        }


class ExperimentExecuteRequest(BaseModel):
    """Request model for executing a registered experiment."""
    subject_id: int = Field(..., description="Subject identifier used for bucketing")
    subject_type: Optional[str] = Field(None, description="Subject type")
    behavioral_attributes: Dict[str, Any] = Field(default_factory=dict, description="Behavioral attributes")
    contextual_attributes: Dict[str, Any] = Field(default_factory=dict, description="Contextual attributes")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Input passed to both implementations")
    context: Dict[str, Any] = Field(default_factory=dict, description="Additional comparison context")


class ExperimentExecuteResponse(BaseModel):
    """Response model for an executed experiment."""
    experiment: str = Field(..., description="Experiment name")
    result: Any = Field(None, description="Control result")
