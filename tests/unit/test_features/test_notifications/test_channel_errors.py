"""Tests for provider error classification and DeliveryResult helpers."""

from __future__ import annotations

import pytest

from notification_service.features.notifications.channels import DeliveryResult, classify_error
from notification_service.features.notifications.enums import ErrorCategory


@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Invalid registration token (INVALID_ARGUMENT)", ErrorCategory.INVALID_TOKEN),
            ("Device unregistered (APNs Unregistered)", ErrorCategory.UNREGISTERED_DEVICE),
            ("Twilio API timeout", ErrorCategory.TIMEOUT),
            ("Twilio rate limit exceeded", ErrorCategory.RATE_LIMIT),
            ("Too many requests", ErrorCategory.RATE_LIMIT),
            ("WhatsApp connection error: refused", ErrorCategory.NETWORK_ERROR),
            ("Network unreachable", ErrorCategory.NETWORK_ERROR),
            ("SMTP authentication failed: 535", ErrorCategory.AUTH_ERROR),
            ("Twilio credentials not configured", ErrorCategory.AUTH_ERROR),
            ("Requested entity was not found", ErrorCategory.NOT_FOUND),
            ("Something exploded", ErrorCategory.OTHER),
        ],
    )
    def test_categories(self, message: str, expected: ErrorCategory):
        assert classify_error(message) == expected

    def test_matching_is_case_insensitive(self):
        assert classify_error("TIMEOUT waiting for provider") == ErrorCategory.TIMEOUT

    def test_first_rule_wins(self):
        # Mentions both a bad token and a timeout
        assert classify_error("invalid token after timeout") == ErrorCategory.INVALID_TOKEN

    def test_invalid_without_token_is_not_token_error(self):
        assert classify_error("Invalid phone number format") == ErrorCategory.OTHER

    @pytest.mark.parametrize("message", [None, "", "   "])
    def test_missing_text_is_unknown(self, message: str | None):
        assert classify_error(message) == ErrorCategory.UNKNOWN


@pytest.mark.unit
class TestDeliveryResult:
    def test_ok(self):
        result = DeliveryResult.ok("msg-1", latency_ms=12)

        assert result.success is True
        assert result.message_id == "msg-1"
        assert result.error_category is None
        assert result.invalid_tokens == []

    def test_failure_classifies(self):
        result = DeliveryResult.failure("SMTP timeout")

        assert result.success is False
        assert result.error == "SMTP timeout"
        assert result.error_category == ErrorCategory.TIMEOUT
        assert result.exhausted is False
