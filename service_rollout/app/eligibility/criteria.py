"""
Functional, behavioral and contextual eligibility criteria.

Every check returns ``None`` when the criteria pass and a human-readable
failure reason otherwise. Malformed attribute values raise
EligibilityEvaluationError, which the policy turns into an ineligible
verdict.
"""

from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from shared.logging import get_logger
from shared.errors import EligibilityEvaluationError
from ..config.models import EligibilityConfig
from .external import ExternalEligibilityChecker
from .models import (
    EligibilityCriteria,
    ALLOWLIST_ID_ATTRIBUTE,
    CHECK_EXTERNAL_ATTRIBUTE,
    GROUPS_ATTRIBUTE,
    REGION_ATTRIBUTE,
    PURCHASE_HISTORY_ATTRIBUTE,
)

logger = get_logger("rollout.eligibility.criteria")

BehavioralPredicate = Callable[[Mapping[str, Any]], Optional[str]]


def normalize_identifier(value: Any) -> str:
    """Strip everything but letters and digits."""
    return "".join(ch for ch in str(value) if ch.isalnum())


def contains_ignore_case(values: Iterable[str], candidate: str) -> bool:
    folded = candidate.casefold()
    return any(value.casefold() == folded for value in values)


def subject_groups(value: Any) -> List[str]:
    """Read the groups attribute sent as a list of names or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [group.strip() for group in value.split(",") if group.strip()]
    if isinstance(value, (list, tuple)) and all(isinstance(group, str) for group in value):
        return [group.strip() for group in value if group.strip()]
    raise EligibilityEvaluationError(
        f"Malformed attribute '{GROUPS_ATTRIBUTE}': {value!r}",
        details={"attribute": GROUPS_ATTRIBUTE}
    )


def coerce_flag(value: Any, attribute: str) -> bool:
    """Read a boolean attribute sent as bool, "true"/"false" or 0/1."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    elif isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise EligibilityEvaluationError(
        f"Malformed boolean attribute '{attribute}': {value!r}",
        details={"attribute": attribute}
    )


def require_flag(attribute: str) -> BehavioralPredicate:
    """Predicate: ``attribute`` must be truthy when present."""
    def predicate(attributes: Mapping[str, Any]) -> Optional[str]:
        if attribute in attributes and not coerce_flag(attributes[attribute], attribute):
            return f"behavioral criterion not met: {attribute}"
        return None

    predicate.__name__ = f"require_flag_{attribute}"
    return predicate


def require_minimum(attribute: str, minimum: float) -> BehavioralPredicate:
    """Predicate: ``attribute`` must be at least ``minimum`` when present."""
    def predicate(attributes: Mapping[str, Any]) -> Optional[str]:
        if attribute not in attributes:
            return None
        raw = attributes[attribute]
        if isinstance(raw, bool):
            raise EligibilityEvaluationError(
                f"Malformed numeric attribute '{attribute}': {raw!r}",
                details={"attribute": attribute}
            )
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise EligibilityEvaluationError(
                f"Malformed numeric attribute '{attribute}': {raw!r}",
                details={"attribute": attribute}
            )
        if value < minimum:
            return f"behavioral criterion not met: {attribute} below {minimum}"
        return None

    predicate.__name__ = f"require_minimum_{attribute}"
    return predicate


DEFAULT_BEHAVIORAL_PREDICATES: Sequence[BehavioralPredicate] = (
    require_flag(PURCHASE_HISTORY_ATTRIBUTE),
)


def check_functional(
    criteria: EligibilityCriteria,
    config: EligibilityConfig,
    external_checker: Optional[ExternalEligibilityChecker] = None
) -> Optional[str]:
    """Subject type, group membership, identifier allowlist and external eligibility."""
    if config.allowed_subject_types:
        if not criteria.subject_type or not contains_ignore_case(
            config.allowed_subject_types, criteria.subject_type
        ):
            return f"subject type not allowed: {criteria.subject_type}"

    context = criteria.contextual_attributes
    if config.allowed_groups:
        groups = subject_groups(context.get(GROUPS_ATTRIBUTE))
        if not any(contains_ignore_case(config.allowed_groups, group) for group in groups):
            return "subject not in any allowed group"

    raw_identifier = context.get(ALLOWLIST_ID_ATTRIBUTE)
    identifier = normalize_identifier(raw_identifier) if raw_identifier is not None else ""

    if identifier and config.allowed_allowlist_ids:
        allowed = [normalize_identifier(entry) for entry in config.allowed_allowlist_ids]
        if not contains_ignore_case(allowed, identifier):
            return "identifier not in allowlist"

    if CHECK_EXTERNAL_ATTRIBUTE in context and coerce_flag(
        context[CHECK_EXTERNAL_ATTRIBUTE], CHECK_EXTERNAL_ATTRIBUTE
    ):
        return _check_external(criteria.subject_id, identifier, external_checker)

    return None


def _check_external(
    subject_id: int,
    identifier: str,
    external_checker: Optional[ExternalEligibilityChecker]
) -> Optional[str]:
    if not identifier:
        return "external eligibility check failed: missing identifier"
    if external_checker is None:
        return "external eligibility check failed: no eligibility service configured"

    try:
        eligible = external_checker.is_eligible(identifier, subject_id)
    except Exception as e:
        logger.error("External eligibility check failed", subject_id=subject_id, error=str(e))
        return f"external eligibility check failed: {e}"

    if not eligible:
        return "external eligibility service denied subject"
    return None


def check_behavioral(
    criteria: EligibilityCriteria,
    predicates: Sequence[BehavioralPredicate] = DEFAULT_BEHAVIORAL_PREDICATES
) -> Optional[str]:
    for predicate in predicates:
        reason = predicate(criteria.behavioral_attributes)
        if reason is not None:
            return reason
    return None


def check_contextual(criteria: EligibilityCriteria, config: EligibilityConfig) -> Optional[str]:
    region = criteria.contextual_attributes.get(REGION_ATTRIBUTE)
    if region is None or region == "" or not config.allowed_regions:
        return None
    if not contains_ignore_case(config.allowed_regions, str(region)):
        return f"region not allowed: {region}"
    return None
