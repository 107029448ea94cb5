"""
Configuration validation at application startup.

Validates that all critical configuration values are properly set before
services start, providing clear error messages for missing or invalid settings.
Partition layout problems are fatal: the pipeline refuses to run rather than
silently misroute trades.
"""

import logging
from typing import List, Dict, Any, Optional
from dataclasses import dataclass

from core.utils.exceptions import InvalidConfigurationError
from .settings import Settings, Role, ExecutorVariant, ConfirmationOutput

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ValidationResult:
    """Result of a configuration validation check"""
    is_valid: bool
    component: str
    message: str
    severity: str = "error"  # "error", "warning", "info"
    config_field: Optional[str] = None
    config_value: Any = None


class ConfigurationValidator:
    """
    Configuration validator for startup checks.

    Collects every problem before reporting so operators can fix the whole
    configuration in one pass.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.validation_results: List[ValidationResult] = []

    def validate_all(self) -> bool:
        """
        Run all validation checks.

        Returns:
            bool: True if all critical validations pass
        """
        self.validation_results = []
        self._validate_partitioning()
        self._validate_requestor_settings()
        self._validate_executor_settings()
        self._validate_delivery_settings()
        self._validate_logging_settings()

        errors = self.errors
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        if errors:
            logger.error(f"Configuration validation failed: {len(errors)} errors, {len(warnings)} warnings")
            for result in errors:
                logger.error(f"   ERROR [{result.component}]: {result.message}")

        for result in warnings:
            logger.warning(f"   WARNING [{result.component}]: {result.message}")

        if not errors and not warnings:
            logger.info("All configuration validation checks passed")
        elif not errors:
            logger.info(f"Configuration validation passed with {len(warnings)} warnings")

        return len(errors) == 0

    @property
    def errors(self) -> List[ValidationResult]:
        return [r for r in self.validation_results if r.severity == "error"]

    @property
    def warnings(self) -> List[ValidationResult]:
        return [r for r in self.validation_results if r.severity == "warning"]

    def _error(self, component: str, message: str, field: str, value: Any) -> None:
        self.validation_results.append(ValidationResult(
            is_valid=False,
            component=component,
            message=message,
            severity="error",
            config_field=field,
            config_value=value,
        ))

    def _warning(self, component: str, message: str) -> None:
        self.validation_results.append(ValidationResult(
            is_valid=False,
            component=component,
            message=message,
            severity="warning",
        ))

    def _validate_partitioning(self):
        """Partition counts must be positive integers"""
        partitioning = self.settings.partitioning
        count = partitioning.partition_count
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            self._error(
                "Partitioning",
                f"PARTITIONING__PARTITION_COUNT must be a positive integer, got {count!r}",
                "partitioning.partition_count", count,
            )

        confirmations = partitioning.confirmation_partition_count
        if not isinstance(confirmations, int) or confirmations <= 0:
            self._error(
                "Partitioning",
                f"PARTITIONING__CONFIRMATION_PARTITION_COUNT must be a positive integer, got {confirmations!r}",
                "partitioning.confirmation_partition_count", confirmations,
            )
        elif confirmations > 1:
            self._warning(
                "Partitioning",
                "Confirmation stream has more than one partition; reply-binding confirmations "
                "carry no key and lose cross-partition ordering",
            )

    def _validate_requestor_settings(self):
        if not self.settings.has_role(Role.REQUESTOR):
            return

        requestor = self.settings.requestor
        if requestor.interval_ms <= 0:
            self._error(
                "Requestor",
                f"REQUESTOR__INTERVAL_MS must be positive, got {requestor.interval_ms}",
                "requestor.interval_ms", requestor.interval_ms,
            )
        if requestor.account_range <= 0:
            self._error(
                "Requestor",
                f"REQUESTOR__ACCOUNT_RANGE must be positive, got {requestor.account_range}",
                "requestor.account_range", requestor.account_range,
            )
        elif 0 < requestor.account_range < self.settings.partitioning.partition_count:
            self._warning(
                "Requestor",
                f"Only {requestor.account_range} accounts for "
                f"{self.settings.partitioning.partition_count} partitions; some partitions will stay idle",
            )

    def _validate_executor_settings(self):
        if not self.settings.has_role(Role.EXECUTOR):
            return

        executor = self.settings.executor
        if executor.instance_count <= 0:
            self._error(
                "Executor",
                f"EXECUTOR__INSTANCE_COUNT must be positive, got {executor.instance_count}",
                "executor.instance_count", executor.instance_count,
            )
        elif not 0 <= executor.instance_index < executor.instance_count:
            self._error(
                "Executor",
                f"EXECUTOR__INSTANCE_INDEX must be in [0, {executor.instance_count}), "
                f"got {executor.instance_index}",
                "executor.instance_index", executor.instance_index,
            )
        elif executor.instance_count > self.settings.partitioning.partition_count > 0:
            self._warning(
                "Executor",
                f"{executor.instance_count} executor instances for "
                f"{self.settings.partitioning.partition_count} partitions; some instances will own nothing",
            )

        if (executor.variant == ExecutorVariant.REPLY_BINDING
                and executor.confirmation_output == ConfirmationOutput.LOG):
            self._warning(
                "Executor",
                "EXECUTOR__CONFIRMATION_OUTPUT=log is ignored by the reply_binding variant",
            )

    def _validate_delivery_settings(self):
        delivery = self.settings.delivery
        if delivery.max_attempts < 1:
            self._error(
                "Delivery",
                f"DELIVERY__MAX_ATTEMPTS must be at least 1, got {delivery.max_attempts}",
                "delivery.max_attempts", delivery.max_attempts,
            )
        if delivery.backoff_ms < 0 or delivery.max_backoff_ms < 0:
            self._error(
                "Delivery",
                "DELIVERY__BACKOFF_MS and DELIVERY__MAX_BACKOFF_MS must not be negative",
                "delivery.backoff_ms", delivery.backoff_ms,
            )
        if not delivery.dead_letter_enabled:
            self._warning(
                "Delivery",
                "Dead-lettering disabled; an unprocessable message will block its partition until fixed",
            )

    def _validate_logging_settings(self):
        level = self.settings.logging.level.upper()
        if level not in _LOG_LEVELS:
            self._error(
                "Logging",
                f"LOGGING__LEVEL must be one of {sorted(_LOG_LEVELS)}, got {self.settings.logging.level!r}",
                "logging.level", self.settings.logging.level,
            )

    def get_validation_summary(self) -> Dict[str, Any]:
        """Get a summary of validation results"""
        errors = self.errors
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        return {
            "total_checks": len(self.validation_results),
            "errors": len(errors),
            "warnings": len(warnings),
            "is_valid": len(errors) == 0,
            "error_details": [{"component": r.component, "message": r.message} for r in errors],
            "warning_details": [{"component": r.component, "message": r.message} for r in warnings]
        }


def validate_startup_configuration(settings: Settings) -> ConfigurationValidator:
    """
    Run startup configuration validation and fail fast on errors.

    Args:
        settings: Application settings to validate

    Returns:
        The validator, for callers that want the summary

    Raises:
        InvalidConfigurationError: if any check reports an error
    """
    validator = ConfigurationValidator(settings)
    if not validator.validate_all():
        first = validator.errors[0]
        raise InvalidConfigurationError(
            first.message,
            config_field=first.config_field,
            config_value=first.config_value,
            details=validator.get_validation_summary(),
        )
    return validator
