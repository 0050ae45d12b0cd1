"""
Typed configuration stores on top of a ConfigProvider.

Nothing is cached: every accessor reads the provider, so a write made by
any replica is picked up on the next call.
"""

from typing import FrozenSet, Iterable, Optional

from shared.logging import get_logger
from shared.errors import ConfigurationError
from .provider import ConfigProvider
from .models import RolloutConfig, EligibilityConfig

# Configuration keys
ROLLOUT_ENABLED_KEY = "rollout:enabled"
ROLLOUT_PERCENTAGE_KEY = "rollout:percentage"
ROLLOUT_PUBLISH_RESULTS_KEY = "rollout:publish_results"
CRITERIA_ACTIVE_KEY = "rollout:criteria_active"
MULTIPLE_CRITERIA_KEY = "rollout:multiple_criteria"
ALLOWED_SUBJECT_TYPES_KEY = "rollout:allowed_subject_types"
ALLOWED_GROUPS_KEY = "rollout:allowed_groups"
ALLOWED_ALLOWLIST_IDS_KEY = "rollout:allowed_allowlist_ids"
ALLOWED_REGIONS_KEY = "rollout:allowed_regions"

MIN_PERCENTAGE = 0
MAX_PERCENTAGE = 100


def parse_bool(value: str) -> bool:
    """Parse a stored flag; anything other than "true" reads as False."""
    return value.strip().lower() == "true"


def format_bool(value: bool) -> str:
    return "true" if value else "false"


def split_list(value: str) -> FrozenSet[str]:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


def join_list(values: Iterable[str]) -> str:
    items = sorted(values)
    for item in items:
        if "," in item:
            raise ConfigurationError(
                "List entries must not contain commas",
                details={"entry": item}
            )
    return ",".join(items)


class RolloutConfigStore:
    """Reads and writes RolloutConfig through the provider."""

    def __init__(self, provider: ConfigProvider):
        self.provider = provider
        self.logger = get_logger("rollout.config.store")

    def is_enabled(self) -> bool:
        return parse_bool(self.provider.get_string(ROLLOUT_ENABLED_KEY, "true"))

    def set_enabled(self, enabled: bool) -> None:
        self.provider.set_string(ROLLOUT_ENABLED_KEY, format_bool(enabled))

    def get_percentage(self) -> int:
        """Return the stored percentage, reading 0 when it is out of range."""
        percentage = self.provider.get_int(ROLLOUT_PERCENTAGE_KEY, MIN_PERCENTAGE)
        if percentage < MIN_PERCENTAGE or percentage > MAX_PERCENTAGE:
            self.logger.warning("Stored rollout percentage out of range", stored=percentage)
            return MIN_PERCENTAGE
        return percentage

    def set_percentage(self, percentage: int) -> None:
        self.validate_percentage(percentage)
        self.provider.set_string(ROLLOUT_PERCENTAGE_KEY, str(percentage))

    def should_publish_results(self) -> bool:
        return parse_bool(self.provider.get_string(ROLLOUT_PUBLISH_RESULTS_KEY, "true"))

    def set_publish_results(self, publish: bool) -> None:
        self.provider.set_string(ROLLOUT_PUBLISH_RESULTS_KEY, format_bool(publish))

    def snapshot(self) -> RolloutConfig:
        return RolloutConfig(
            enabled=self.is_enabled(),
            percentage=self.get_percentage(),
            publish_results=self.should_publish_results(),
        )

    def update(
        self,
        enabled: Optional[bool] = None,
        percentage: Optional[int] = None,
        publish_results: Optional[bool] = None
    ) -> RolloutConfig:
        """Apply a partial update. The percentage is validated before any write."""
        if percentage is not None:
            self.set_percentage(percentage)
        if enabled is not None:
            self.set_enabled(enabled)
        if publish_results is not None:
            self.set_publish_results(publish_results)

        config = self.snapshot()
        self.logger.info(
            "Rollout configuration updated",
            enabled=config.enabled,
            percentage=config.percentage,
            publish_results=config.publish_results
        )
        return config

    @staticmethod
    def validate_percentage(percentage: int) -> None:
        if isinstance(percentage, bool) or not isinstance(percentage, int):
            raise ConfigurationError(
                "Rollout percentage must be an integer",
                details={"percentage": percentage}
            )
        if percentage < MIN_PERCENTAGE or percentage > MAX_PERCENTAGE:
            raise ConfigurationError(
                "Rollout percentage must be between 0 and 100",
                details={"percentage": percentage}
            )


class EligibilityConfigStore:
    """Reads and writes EligibilityConfig through the provider."""

    def __init__(self, provider: ConfigProvider):
        self.provider = provider
        self.logger = get_logger("rollout.config.eligibility")

    def load(self) -> EligibilityConfig:
        return EligibilityConfig(
            criteria_validation_active=parse_bool(self.provider.get_string(CRITERIA_ACTIVE_KEY, "false")),
            multiple_criteria_enabled=parse_bool(self.provider.get_string(MULTIPLE_CRITERIA_KEY, "false")),
            allowed_subject_types=split_list(self.provider.get_string(ALLOWED_SUBJECT_TYPES_KEY, "")),
            allowed_groups=split_list(self.provider.get_string(ALLOWED_GROUPS_KEY, "")),
            allowed_allowlist_ids=split_list(self.provider.get_string(ALLOWED_ALLOWLIST_IDS_KEY, "")),
            allowed_regions=split_list(self.provider.get_string(ALLOWED_REGIONS_KEY, "")),
        )

    def save(self, config: EligibilityConfig) -> None:
        # Serialize everything first so a bad entry writes nothing
        values = {
            CRITERIA_ACTIVE_KEY: format_bool(config.criteria_validation_active),
            MULTIPLE_CRITERIA_KEY: format_bool(config.multiple_criteria_enabled),
            ALLOWED_SUBJECT_TYPES_KEY: join_list(config.allowed_subject_types),
            ALLOWED_GROUPS_KEY: join_list(config.allowed_groups),
            ALLOWED_ALLOWLIST_IDS_KEY: join_list(config.allowed_allowlist_ids),
            ALLOWED_REGIONS_KEY: join_list(config.allowed_regions),
        }
        for key, value in values.items():
            self.provider.set_string(key, value)

        self.logger.info(
            "Eligibility configuration updated",
            criteria_validation_active=config.criteria_validation_active,
            multiple_criteria_enabled=config.multiple_criteria_enabled,
            subject_types=len(config.allowed_subject_types),
            groups=len(config.allowed_groups),
            allowlist_ids=len(config.allowed_allowlist_ids),
            regions=len(config.allowed_regions)
        )
