"""Tests for PII scrubbing."""

from trackpoint.models import Event
from trackpoint.privacy import (
    REDACTED,
    PrivacyPlugin,
    is_sensitive_key,
    scrub_dict,
    scrub_list,
    scrub_string,
)


class TestIsSensitiveKey:
    """Tests for sensitive key detection."""

    def test_password_variations(self):
        """Password-related keys are sensitive."""
        assert is_sensitive_key("password") is True
        assert is_sensitive_key("user_password") is True
        assert is_sensitive_key("PASSWORD") is True

    def test_token_variations(self):
        """Token-related keys are sensitive."""
        assert is_sensitive_key("token") is True
        assert is_sensitive_key("access-token") is True

    def test_email_variations(self):
        """Email-related keys are sensitive."""
        assert is_sensitive_key("email") is True
        assert is_sensitive_key("user_email") is True

    def test_non_sensitive_keys(self):
        """Ordinary analytics keys are not sensitive."""
        assert is_sensitive_key("plan") is False
        assert is_sensitive_key("utm_source") is False
        assert is_sensitive_key("session_id") is False
        assert is_sensitive_key("device_type") is False


class TestScrubString:
    """Tests for string pattern scrubbing."""

    def test_email_scrubbing(self):
        assert scrub_string("contact: jane@example.com") == f"contact: {REDACTED}"

    def test_credit_card_scrubbing(self):
        assert REDACTED in scrub_string("card 4111 1111 1111 1111")

    def test_bearer_token_scrubbing(self):
        assert scrub_string("Bearer abc.def-123") == REDACTED

    def test_non_sensitive_string(self):
        assert scrub_string("clicked Upgrade") == "clicked Upgrade"


class TestScrubDict:
    """Tests for mapping scrubbing."""

    def test_sensitive_keys_scrubbed(self):
        """Values under sensitive keys are replaced whole."""
        result = scrub_dict({"password": "hunter2", "plan": "pro"})
        assert result == {"password": REDACTED, "plan": "pro"}

    def test_nested(self):
        """Nested mappings and lists are scrubbed too."""
        data = {"user": {"api_key": "k", "name": "x"}, "items": [{"token": "t"}]}

        assert scrub_dict(data) == {
            "user": {"api_key": REDACTED, "name": "x"},
            "items": [{"token": REDACTED}],
        }

    def test_scrub_values_option(self):
        """String values are only pattern-scrubbed when asked."""
        data = {"note": "mail jane@example.com"}

        assert scrub_dict(data) == data
        assert scrub_dict(data, scrub_values=True) == {"note": f"mail {REDACTED}"}

    def test_input_not_mutated(self):
        data = {"password": "hunter2"}
        scrub_dict(data)
        assert data == {"password": "hunter2"}


class TestScrubList:
    """Tests for list scrubbing."""

    def test_nested_lists(self):
        assert scrub_list([["jane@example.com"]], scrub_values=True) == [[REDACTED]]


class TestPrivacyPlugin:
    """Tests for the enqueue-time plugin."""

    def make_event(self, **kwargs):
        defaults = {"name": "signup", "session_id": "s", "timestamp": "2024-01-15T12:00:00.000Z"}
        defaults.update(kwargs)
        return Event(**defaults)

    def test_redacts_properties_and_url(self):
        """Properties and the location hint are scrubbed."""
        event = self.make_event(
            url="/invite?to=jane@example.com",
            properties={"email": "jane@example.com", "comment": "call +44 2071234567"},
        )

        result = PrivacyPlugin().before_enqueue(event)

        assert result.properties == {"email": REDACTED, "comment": f"call {REDACTED}"}
        assert result.url == f"/invite?to={REDACTED}"
        assert event.properties["email"] == "jane@example.com"

    def test_extra_keys(self):
        """Additional key fragments are treated as sensitive."""
        event = self.make_event(properties={"Account_Number": "123", "plan": "pro"})

        result = PrivacyPlugin(extra_keys=["account_number"]).before_enqueue(event)

        assert result.properties == {"Account_Number": REDACTED, "plan": "pro"}

    def test_values_untouched_when_disabled(self):
        event = self.make_event(url="/a?e=jane@example.com", properties={"note": "jane@example.com"})

        result = PrivacyPlugin(scrub_values=False, scrub_url=False).before_enqueue(event)

        assert result.properties == {"note": "jane@example.com"}
        assert result.url == "/a?e=jane@example.com"
