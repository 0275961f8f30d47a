"""PII scrubbing for event properties.

``PrivacyPlugin`` redacts sensitive values before events reach the buffer:
- property keys that name sensitive data (passwords, tokens, emails, ...)
- optionally, sensitive patterns inside string values (emails, card
  numbers, bearer tokens, ...)
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from .models import Event
from .plugins import Plugin

REDACTED = "[REDACTED]"

# Property names whose values are always redacted (substring match)
PII_DENYLIST: Set[str] = {
    # Authentication
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "credential",
    "cookie",
    "csrf",
    # Personal information
    "email",
    "e_mail",
    "phone",
    "telephone",
    "mobile",
    "street",
    "zipcode",
    "postal",
    "ssn",
    "social_security",
    "tax_id",
    # Financial
    "credit_card",
    "creditcard",
    "card_number",
    "cvv",
    "cvc",
    "iban",
    "bank_account",
    "routing_number",
    "private_key",
}

# Patterns for detecting sensitive data in string values
SENSITIVE_PATTERNS = [
    # Email addresses
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
    # Credit card numbers (basic pattern)
    re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    # SSN
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    # Phone numbers with a country code
    re.compile(r"\+\d{1,3}[-.\s]?\d{3,14}"),
    # Bearer tokens
    re.compile(r"Bearer\s+[A-Za-z0-9._-]+"),
]


def is_sensitive_key(key: str, denylist: Iterable[str] = PII_DENYLIST) -> bool:
    """Check if a property name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return any(denied in key_lower for denied in denylist)


def scrub_string(value: str) -> str:
    """Replace sensitive patterns in ``value`` with ``[REDACTED]``."""
    for pattern in SENSITIVE_PATTERNS:
        value = pattern.sub(REDACTED, value)
    return value


def scrub_value(value: Any, scrub_values: bool, denylist: Iterable[str] = PII_DENYLIST) -> Any:
    if isinstance(value, dict):
        return scrub_dict(value, scrub_values=scrub_values, denylist=denylist)
    if isinstance(value, (list, tuple)):
        return scrub_list(value, scrub_values=scrub_values, denylist=denylist)
    if isinstance(value, str) and scrub_values:
        return scrub_string(value)
    return value


def scrub_dict(
    data: Dict[str, Any],
    scrub_values: bool = False,
    denylist: Iterable[str] = PII_DENYLIST,
) -> Dict[str, Any]:
    """Return a copy of ``data`` with sensitive entries redacted, recursively.

    Args:
        data: The mapping to scrub.
        scrub_values: Whether to also scan string values for sensitive patterns.
        denylist: Key fragments that mark a value as sensitive.
    """
    denylist = set(denylist)
    result = {}

    for key, value in data.items():
        if is_sensitive_key(key, denylist):
            result[key] = REDACTED
        else:
            result[key] = scrub_value(value, scrub_values, denylist)

    return result


def scrub_list(
    data: Iterable[Any],
    scrub_values: bool = False,
    denylist: Iterable[str] = PII_DENYLIST,
) -> List[Any]:
    return [scrub_value(item, scrub_values, denylist) for item in data]


class PrivacyPlugin(Plugin):
    """Plugin redacting sensitive event properties before buffering.

    Args:
        scrub_values: Also scan string values for emails, card numbers, etc.
        extra_keys: Additional key fragments to treat as sensitive.
        scrub_url: Apply pattern scrubbing to the event location hint.
    """

    def __init__(
        self,
        scrub_values: bool = True,
        extra_keys: Optional[Iterable[str]] = None,
        scrub_url: bool = True,
    ) -> None:
        self.scrub_values = scrub_values
        self.scrub_url = scrub_url
        self.denylist = set(PII_DENYLIST) | {k.lower() for k in (extra_keys or ())}

    def before_enqueue(self, event: Event) -> Event:
        properties = scrub_dict(
            event.properties, scrub_values=self.scrub_values, denylist=self.denylist
        )
        url = event.url
        if self.scrub_url and url:
            url = scrub_string(url)
        return dataclasses.replace(event, properties=properties, url=url)
