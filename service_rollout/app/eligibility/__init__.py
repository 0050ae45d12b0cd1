"""
Eligibility package.

Decides whether a subject takes part in a dual-path comparison. The
percentage gate is deterministic per subject; functional, behavioral and
contextual criteria layer on top of it, and an external service can be
consulted for the final say on functional eligibility.

Modules of interest:
- bucketing: Subject-keyed percentage gate and the shared sampler.
- criteria: Individual criteria checks and behavioral predicates.
- policy: Evaluation order and fail-closed error handling.
"""

from .bucketing import in_bucket, Sampler
from .models import EligibilityCriteria, Verdict
from .external import ExternalEligibilityChecker, HttpEligibilityClient
from .policy import EligibilityPolicy

__all__ = [
    "in_bucket",
    "Sampler",
    "EligibilityCriteria",
    "Verdict",
    "ExternalEligibilityChecker",
    "HttpEligibilityClient",
    "EligibilityPolicy",
]
