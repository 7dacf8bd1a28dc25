"""
PII handling for event payloads.

Two tools with different strengths:

- ``strip_pii`` removes keys that name personal data ("email", "phone", ...)
  and is what ``pii_middleware`` applies to event data before commit.
- ``Redactor`` keeps keys but masks sensitive values, by key name and by
  pattern (emails, card numbers, tokens). The persistence plugin uses it to
  scrub events before they are written out.

Usage:
    from opendatalayer import DataLayer
    from opendatalayer.sanitize import Redactor, pii_middleware

    layer = DataLayer()
    layer.use(pii_middleware())

    Redactor().redact({"note": "mail me at a@b.io"})  # {"note": "mail me at [REDACTED_EMAIL]"}
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from .events import Event
from .middleware import Next, PipelineResult

DEFAULT_PII_FIELDS: tuple[str, ...] = (
    "email",
    "emailAddress",
    "email_address",
    "phone",
    "phoneNumber",
    "phone_number",
    "ssn",
    "socialSecurityNumber",
    "social_security_number",
    "creditCard",
    "credit_card",
    "creditCardNumber",
    "credit_card_number",
    "password",
    "passwd",
    "secret",
    "token",
    "firstName",
    "first_name",
    "lastName",
    "last_name",
    "fullName",
    "full_name",
    "dateOfBirth",
    "date_of_birth",
    "dob",
    "address",
    "streetAddress",
    "street_address",
    "ipAddress",
    "ip_address",
)


def sanitize_string(value: str, max_length: int = 1000) -> str:
    """Trim whitespace and truncate to ``max_length`` characters."""
    return value.strip()[:max_length]


def strip_pii(obj: Mapping[str, Any], fields: Iterable[str] | None = None) -> dict[str, Any]:
    """
    Return a copy of ``obj`` without PII keys.

    Key matching is case-insensitive. Nested mappings are processed
    recursively; lists are kept as they are.
    """
    lowered = {f.lower() for f in (fields if fields is not None else DEFAULT_PII_FIELDS)}
    return _strip(obj, lowered)


def _strip(obj: Mapping[str, Any], lowered: set[str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in obj.items():
        if str(key).lower() in lowered:
            continue
        result[key] = _strip(value, lowered) if isinstance(value, Mapping) else value
    return result


def pii_middleware(fields: Iterable[str] | None = None):
    """
    Build a middleware that strips PII keys from event data.

    Events without data pass through untouched.
    """
    lowered = {f.lower() for f in (fields if fields is not None else DEFAULT_PII_FIELDS)}

    def strip_pii_from_data(event: Event, next: Next) -> PipelineResult:
        if not event.data:
            return next()
        return next(event.evolve(data=_strip(event.data, lowered)))

    return strip_pii_from_data


class Redactor:
    """
    Masks PII and secrets in event payloads.

    Values under sensitive keys are replaced with "[REDACTED]"; string values
    elsewhere are scanned with regex patterns.

    Usage:
        redactor = Redactor()
        safe_data = redactor.redact(data)
    """

    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        (r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[REDACTED_EMAIL]"),
        (r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b", "[REDACTED_CC]"),
        (r"\b\d{3}-\d{2}-\d{4}\b", "[REDACTED_SSN]"),
        (r"\+\d{10,15}\b", "[REDACTED_PHONE]"),
        (r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b", "[REDACTED_IP]"),
        (r"Bearer\s+[a-zA-Z0-9._-]+", "[REDACTED_BEARER]"),
        (r"\beyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\b", "[REDACTED_JWT]"),
        (r"://[^:/\s]+:[^@\s]+@", "://[REDACTED]:[REDACTED]@"),
    ]

    def __init__(
        self,
        enabled: bool = True,
        patterns: list[tuple[str, str]] | None = None,
        redact_keys: Iterable[str] | None = None,
    ):
        """
        Initialize the redactor.

        Args:
            enabled: Whether redaction is active
            patterns: Regex patterns as (pattern, replacement) tuples
            redact_keys: Keys whose values are always redacted (case-insensitive);
                defaults to the PII field list
        """
        self.enabled = enabled
        self.patterns = patterns or self.DEFAULT_PATTERNS.copy()
        self.redact_keys = {k.lower() for k in (redact_keys or DEFAULT_PII_FIELDS)}
        self._compiled = [(re.compile(p, re.IGNORECASE), r) for p, r in self.patterns]

    def redact_string(self, value: str) -> str:
        if not self.enabled:
            return value
        for pattern, replacement in self._compiled:
            value = pattern.sub(replacement, value)
        return value

    def redact(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """
        Redact a payload.

        Returns:
            New dictionary with sensitive data masked (input is not modified)
        """
        if not self.enabled:
            return dict(data)
        return self._redact_recursive(data)

    def redact_event(self, event: Event) -> Event:
        """Return a copy of ``event`` with data and context redacted."""
        if not self.enabled:
            return event
        return event.evolve(
            context=self._redact_recursive(event.context),
            data=self._redact_recursive(event.data) if event.data is not None else None,
        )

    def _redact_recursive(self, obj: Any) -> Any:
        if isinstance(obj, Mapping):
            return {
                key: "[REDACTED]" if str(key).lower() in self.redact_keys else self._redact_recursive(value)
                for key, value in obj.items()
            }
        if isinstance(obj, list):
            return [self._redact_recursive(item) for item in obj]
        if isinstance(obj, str):
            return self.redact_string(obj)
        return obj
