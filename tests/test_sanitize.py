"""
PII helper tests.

Covers key-based stripping, the PII middleware and pattern-based redaction.
"""

from __future__ import annotations

from opendatalayer import DataLayer, Event, Redactor, pii_middleware, sanitize_string, strip_pii


class TestStripPII:
    def test_removes_default_fields_case_insensitively(self):
        data = {"Email": "a@b.io", "PHONE": "555", "plan": "pro"}
        assert strip_pii(data) == {"plan": "pro"}

    def test_recurses_into_nested_mappings(self):
        data = {"user": {"firstName": "Ada", "id": "42"}, "items": [{"email": "kept-in-list"}]}
        assert strip_pii(data) == {"user": {"id": "42"}, "items": [{"email": "kept-in-list"}]}

    def test_custom_fields(self):
        assert strip_pii({"loyaltyId": "L1", "email": "a@b.io"}, fields=["loyaltyId"]) == {"email": "a@b.io"}

    def test_input_not_mutated(self):
        data = {"email": "a@b.io"}
        strip_pii(data)
        assert data == {"email": "a@b.io"}


class TestSanitizeString:
    def test_trims_and_truncates(self):
        assert sanitize_string("  hello  ") == "hello"
        assert sanitize_string("x" * 2000) == "x" * 1000
        assert sanitize_string("abcdef", max_length=3) == "abc"


class TestPIIMiddleware:
    def test_strips_event_data_before_commit(self):
        layer = DataLayer()
        layer.use(pii_middleware())

        event = layer.emit("user.signed_up", {"email": "a@b.io", "plan": "pro"})

        assert event.data == {"plan": "pro"}
        assert layer.get_last_event().data == {"plan": "pro"}

    def test_events_without_data_pass_through(self):
        layer = DataLayer()
        layer.use(pii_middleware())
        assert layer.emit("page.view").data is None


class TestRedactor:
    """Pattern and key based masking."""

    def test_redacts_email_in_text(self):
        assert Redactor().redact_string("mail me at a@b.io") == "mail me at [REDACTED_EMAIL]"

    def test_redacts_card_and_ssn(self):
        redactor = Redactor()
        assert redactor.redact_string("card 4111 1111 1111 1111") == "card [REDACTED_CC]"
        assert redactor.redact_string("ssn 123-45-6789") == "ssn [REDACTED_SSN]"

    def test_redacts_tokens(self):
        redactor = Redactor()
        assert redactor.redact_string("Bearer abc.def-123") == "[REDACTED_BEARER]"
        assert redactor.redact_string("postgres://user:hunter2@db/app") == "postgres://[REDACTED]:[REDACTED]@db/app"

    def test_redacts_sensitive_keys(self):
        result = Redactor().redact({"password": "hunter2", "nested": {"token": "t"}, "plan": "pro"})
        assert result == {"password": "[REDACTED]", "nested": {"token": "[REDACTED]"}, "plan": "pro"}

    def test_redacts_inside_lists(self):
        assert Redactor().redact({"notes": ["reach me at a@b.io", 3]}) == {"notes": ["reach me at [REDACTED_EMAIL]", 3]}

    def test_disabled(self):
        data = {"email": "a@b.io"}
        assert Redactor(enabled=False).redact(data) == data

    def test_custom_keys_and_patterns(self):
        redactor = Redactor(patterns=[(r"order-\d+", "[ORDER]")], redact_keys=["loyaltyId"])
        assert redactor.redact({"loyaltyId": "L1", "ref": "order-991"}) == {"loyaltyId": "[REDACTED]", "ref": "[ORDER]"}

    def test_redact_event(self):
        event = Event(name="user.signed_in", context={"user": {"email": "a@b.io"}}, data={"ip": "10.0.0.1"})
        redacted = Redactor().redact_event(event)

        assert redacted.context == {"user": {"email": "[REDACTED]"}}
        assert redacted.data == {"ip": "[REDACTED_IP]"}
        assert redacted.id == event.id
        assert event.data == {"ip": "10.0.0.1"}
