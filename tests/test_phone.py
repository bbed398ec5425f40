"""Tests for lead phone validation."""

import pytest

from lead_dispatch.core.phone import InvalidPhoneError, normalize_phone
from lead_dispatch.core.models import Lead


class TestNormalizePhone:
    """Tests for normalize_phone."""

    def test_strips_separators(self):
        """Test formatting characters are removed."""
        assert normalize_phone("+1 (555) 123-4567") == "+15551234567"
        assert normalize_phone("555.123.4567") == "5551234567"

    def test_missing_phone(self):
        """Test empty and missing numbers are rejected."""
        for raw in (None, "", "   "):
            with pytest.raises(InvalidPhoneError, match="MISSING_PHONE"):
                normalize_phone(raw)

    def test_letters_rejected(self):
        """Test non-dialable characters are rejected."""
        with pytest.raises(InvalidPhoneError, match="INVALID_PHONE"):
            normalize_phone("555-CALL-NOW")

    def test_misplaced_plus(self):
        """Test a plus sign is only allowed at the start."""
        with pytest.raises(InvalidPhoneError):
            normalize_phone("555+1234567")
        with pytest.raises(InvalidPhoneError):
            normalize_phone("++15551234567")

    def test_digit_count(self):
        """Test too short and too long numbers."""
        assert normalize_phone("12345678") == "12345678"
        assert normalize_phone("+123456789012345") == "+123456789012345"
        with pytest.raises(InvalidPhoneError, match="got 7"):
            normalize_phone("1234567")
        with pytest.raises(InvalidPhoneError, match="got 16"):
            normalize_phone("+1234567890123456")


class TestLeadPayload:
    """Tests for building leads from webhook payloads."""

    def test_common_field_names(self):
        """Test alternative field names are mapped."""
        lead = Lead.from_payload({
            "firstName": "Jane",
            "lastName": "Doe",
            "phone_number": "+15551234567",
            "email_address": "jane@example.com",
            "lead_id": 42,
        })

        assert lead.name == "Jane Doe"
        assert lead.phone == "+15551234567"
        assert lead.email == "jane@example.com"
        assert lead.id == "42"
        assert lead.source == "webhook"

    def test_display_name_falls_back(self):
        """Test a nameless lead still has something to show."""
        lead = Lead.from_payload({"phone": "5551234567"})
        assert lead.name == ""
        assert lead.display_name
