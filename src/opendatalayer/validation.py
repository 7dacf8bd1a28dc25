"""
Event validation for the {namespace}.{action} naming convention.

Validation is opt-in: ``DataLayer(validate_events=True)`` rejects badly named
events at emit time. The validator can also be used standalone.

Usage:
    from opendatalayer.validation import EventValidator, ValidationError

    validator = EventValidator()

    validator.validate_event_name("page.view")  # OK
    validator.validate_event_name("pageview").valid  # False

    # With strict mode
    validator = EventValidator(strict=True, allowed_namespaces={"page", "user"})
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

# Event name pattern: {namespace}.{action} with optional sub-actions.
# Actions may be snake_case or camelCase: page.view, ecommerce.cart_add,
# consent.preferencesUpdated, media.video.play
EVENT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-zA-Z0-9_]*)+$")


class ValidationError(Exception):
    """Raised when event validation fails in strict mode."""

    def __init__(self, message: str, event_name: str | None = None):
        self.event_name = event_name
        super().__init__(message)


@dataclass
class ValidationResult:
    """Result of event validation."""

    valid: bool
    errors: list[str]
    warnings: list[str]

    @property
    def ok(self) -> bool:
        return self.valid and len(self.errors) == 0


class EventValidator:
    """
    Validates event names, payloads, custom dimensions and sources.

    In strict mode every failing check raises ValidationError; otherwise the
    checks return a ValidationResult.
    """

    def __init__(
        self,
        strict: bool = False,
        allowed_namespaces: set[str] | None = None,
        require_source: bool = False,
        custom_pattern: re.Pattern[str] | None = None,
    ):
        """
        Initialize the validator.

        Args:
            strict: If True, raise errors; if False, return validation result
            allowed_namespaces: Set of allowed event namespaces (optional)
            require_source: If True, events must carry a source
            custom_pattern: Custom regex pattern for event names
        """
        self.strict = strict
        self.allowed_namespaces = allowed_namespaces
        self.require_source = require_source
        self.pattern = custom_pattern or EVENT_NAME_PATTERN

    def validate_event_name(self, event_name: str) -> ValidationResult:
        """
        Validate an event name.

        Raises:
            ValidationError: If strict mode and validation fails
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not event_name or not event_name.strip():
            errors.append("Event name cannot be empty")
            return self._result(errors, warnings, event_name)

        if not self.pattern.match(event_name):
            errors.append(
                f"Event name '{event_name}' must follow {{namespace}}.{{action}} format "
                f"(lowercase namespace, dots separating parts)"
            )
            return self._result(errors, warnings, event_name)

        namespace = event_name.split(".")[0]
        if self.allowed_namespaces and namespace not in self.allowed_namespaces:
            errors.append(
                f"Namespace '{namespace}' not in allowed namespaces: {sorted(self.allowed_namespaces)}"
            )

        return self._result(errors, warnings, event_name)

    def validate_data(
        self,
        data: Mapping[str, Any] | None,
        required_fields: set[str] | None = None,
    ) -> ValidationResult:
        """Validate an event payload and its required fields."""
        errors: list[str] = []
        warnings: list[str] = []

        if data is None:
            if required_fields:
                errors.append(f"Missing required fields: {sorted(required_fields)}")
            return self._result(errors, warnings)

        if not isinstance(data, Mapping):
            errors.append(f"Data must be a mapping, got {type(data).__name__}")
            return self._result(errors, warnings)

        if required_fields:
            missing = required_fields - set(data.keys())
            if missing:
                errors.append(f"Missing required fields: {sorted(missing)}")

        return self._result(errors, warnings)

    def validate_custom_dimensions(self, dimensions: Mapping[str, Any] | None) -> ValidationResult:
        """Custom dimensions must be a flat mapping of string keys to primitives."""
        errors: list[str] = []
        warnings: list[str] = []

        if dimensions is None:
            return self._result(errors, warnings)

        if not isinstance(dimensions, Mapping):
            errors.append(f"Custom dimensions must be a mapping, got {type(dimensions).__name__}")
            return self._result(errors, warnings)

        for key, value in dimensions.items():
            if not isinstance(key, str):
                errors.append(f"Custom dimension key {key!r} must be a string")
            elif value is None or not isinstance(value, (str, int, float, bool)):
                errors.append(
                    f"Custom dimension '{key}' must be a string, number or boolean, "
                    f"got {type(value).__name__}"
                )

        return self._result(errors, warnings)

    def validate_source(self, source: Any) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if self.require_source and not source:
            errors.append("Event source is required")

        return self._result(errors, warnings)

    def validate(
        self,
        event_name: str,
        data: Mapping[str, Any] | None = None,
        custom_dimensions: Mapping[str, Any] | None = None,
        source: Any = None,
        required_fields: set[str] | None = None,
    ) -> ValidationResult:
        """
        Validate all aspects of an event.

        Returns:
            Combined ValidationResult
        """
        all_errors: list[str] = []
        all_warnings: list[str] = []

        for result in [
            self.validate_event_name(event_name),
            self.validate_data(data, required_fields),
            self.validate_custom_dimensions(custom_dimensions),
            self.validate_source(source),
        ]:
            all_errors.extend(result.errors)
            all_warnings.extend(result.warnings)

        return self._result(all_errors, all_warnings, event_name)

    def _result(
        self,
        errors: list[str],
        warnings: list[str],
        event_name: str | None = None,
    ) -> ValidationResult:
        """Create result, optionally raising in strict mode."""
        valid = len(errors) == 0

        if self.strict and not valid:
            raise ValidationError("; ".join(errors), event_name)

        return ValidationResult(valid=valid, errors=errors, warnings=warnings)


def extract_namespace(event_name: str) -> str | None:
    """Return the namespace of an event name, or None if it has no dot."""
    if not event_name or "." not in event_name:
        return None
    return event_name.split(".")[0]


def extract_action(event_name: str) -> str | None:
    """Return everything after the first dot, or None if there is no dot."""
    if not event_name or "." not in event_name:
        return None
    return event_name.split(".", 1)[1] or None


def is_valid_event_name(event_name: str) -> bool:
    """Quick check if an event name follows the naming convention."""
    return bool(event_name and EVENT_NAME_PATTERN.match(event_name))
