"""Format validation for credential values.

Each credential is validated according to its kind. The kind is either
chosen by the caller (``CredentialRequest.kind``) or derived from the
credential name by :func:`classify_credential`::

    classify_credential("OPENAI_API_KEY")   # CredentialKind.API_KEY
    classify_credential("github_token")     # CredentialKind.TOKEN
    validate_value(CredentialKind.URL, "https://api.example.com")
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse


class CredentialKind(str, Enum):
    """Which validation rules apply to a credential."""

    API_KEY = "api_key"
    TOKEN = "token"
    URL = "url"
    EMAIL = "email"
    GENERIC = "generic"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if self.error:
            data["error"] = self.error
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        return data


VALID = ValidationResult(valid=True)

API_KEY_MIN_LENGTH = 10
TOKEN_MIN_LENGTH = 20

API_KEY_PATTERNS = (
    re.compile(r"^[a-zA-Z0-9]{20,}$"),      # alphanumeric, 20+ chars
    re.compile(r"^sk-[a-zA-Z0-9]{20,}$"),   # OpenAI style
    re.compile(r"^[a-zA-Z0-9]{32,}$"),      # 32+ char alphanumeric
)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def classify_credential(name: str) -> CredentialKind:
    """
    Pick a credential kind from its name (case-insensitive).

    "api" and "key" -> API_KEY, "token" -> TOKEN, "url" -> URL,
    "email" -> EMAIL, anything else -> GENERIC. Checked in that order.
    """
    lowered = (name or "").lower()
    if "api" in lowered and "key" in lowered:
        return CredentialKind.API_KEY
    if "token" in lowered:
        return CredentialKind.TOKEN
    if "url" in lowered:
        return CredentialKind.URL
    if "email" in lowered:
        return CredentialKind.EMAIL
    return CredentialKind.GENERIC


def validate_api_key(value: str) -> ValidationResult:
    if len(value) < API_KEY_MIN_LENGTH:
        return ValidationResult(
            valid=False,
            error="API key appears too short",
            suggestions=[
                "Ensure you have the complete API key",
                "Check for any missing characters",
            ],
        )
    if " " in value:
        return ValidationResult(
            valid=False,
            error="API key should not contain spaces",
            suggestions=["Remove any spaces from the API key"],
        )
    if not any(pattern.match(value) for pattern in API_KEY_PATTERNS):
        return ValidationResult(
            valid=False,
            error="API key format appears invalid",
            suggestions=[
                "Check the API key format",
                "Ensure no extra characters are included",
            ],
        )
    return VALID


def validate_token(value: str) -> ValidationResult:
    if len(value) < TOKEN_MIN_LENGTH:
        return ValidationResult(
            valid=False,
            error="Token appears too short",
            suggestions=[
                "Ensure you have the complete token",
                "Check for any missing characters",
            ],
        )
    return VALID


def validate_url(value: str) -> ValidationResult:
    try:
        parsed = urlparse(value)
    except ValueError:
        parsed = None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        return ValidationResult(
            valid=False,
            error="Invalid URL format",
            suggestions=[
                "Include protocol (http:// or https://)",
                "Check for typos in the URL",
            ],
        )
    return VALID


def validate_email(value: str) -> ValidationResult:
    if not EMAIL_PATTERN.match(value):
        return ValidationResult(
            valid=False,
            error="Invalid email format",
            suggestions=["Use format: user@domain.com", "Check for typos"],
        )
    return VALID


def validate_generic(value: str) -> ValidationResult:
    return VALID


VALIDATORS: Dict[CredentialKind, Callable[[str], ValidationResult]] = {
    CredentialKind.API_KEY: validate_api_key,
    CredentialKind.TOKEN: validate_token,
    CredentialKind.URL: validate_url,
    CredentialKind.EMAIL: validate_email,
    CredentialKind.GENERIC: validate_generic,
}


def validate_value(kind: CredentialKind, value: str) -> ValidationResult:
    """Validate ``value`` with the rules for ``kind``. Empty values never pass."""
    if not isinstance(value, str) or not value:
        return ValidationResult(
            valid=False,
            error="Credential value is empty",
            suggestions=["Ensure the credential has a value"],
        )
    return VALIDATORS[CredentialKind(kind)](value)
