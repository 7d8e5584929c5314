"""Log sanitization for control-plane errors and notification text.

az CLI stderr and SDK exceptions are forwarded verbatim to the operator, so
they pass through here first. Redacted:
- Webhook URL paths (Slack/Teams secrets live in the path)
- SAS signatures and other ``sig=`` query values
- Bearer tokens and access tokens
- Client secrets and passwords
- Connection string passwords

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
"""

import re
from re import Pattern
from typing import Any


class LogSanitizer:
    """Sanitize sensitive data from logs, errors and notifications.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    # Order matters: more specific patterns first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "webhook_path": re.compile(
            r"(https://hooks\.slack\.com/(?:services|workflows|triggers)/)(\S+)",
            re.IGNORECASE,
        ),
        "office_webhook_path": re.compile(
            r"(https://[\w.-]*(?:webhook\.office\.com|logic\.azure\.com)[^\s?]*\?)(\S+)",
            re.IGNORECASE,
        ),
        "sas_signature": re.compile(r"([?&]sig=)([^&\s\"']+)", re.IGNORECASE),
        "authorization_bearer": re.compile(r"(Authorization:\s*Bearer\s+)(\S+)", re.IGNORECASE),
        "bearer_token": re.compile(r"(\bBearer\s+)([A-Za-z0-9\-_.=]{16,})"),
        "access_token": re.compile(
            r'(access[_-]?token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE
        ),
        "client_secret_env": re.compile(
            r"(AZURE_CLIENT_SECRET[\"']?\s*[:=]\s*[\"']?)([^\s\"'&,\)]+)", re.IGNORECASE
        ),
        "client_secret_assignment": re.compile(
            r'(client[_-]?secret["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE
        ),
        "connection_string_password": re.compile(r"(Password\s*=\s*)([^;\s]+)", re.IGNORECASE),
        "password": re.compile(r'(password["\']?\s*[:]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE),
    }

    SENSITIVE_KEYS = ("webhook", "secret", "password", "token", "credential", "authorization")

    @classmethod
    def sanitize(cls, message: Any) -> str:
        """Redact sensitive patterns from a message.

        Args:
            message: Message to sanitize (non-strings are converted with str())

        Returns:
            Sanitized message

        Examples:
            >>> LogSanitizer.sanitize("client_secret=abc123")
            'client_secret=[REDACTED]'
            >>> LogSanitizer.sanitize("post to https://hooks.slack.com/services/T0/B0/xyz")
            'post to https://hooks.slack.com/services/[REDACTED]'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def mask_url(cls, url: str | None) -> str:
        """Show only scheme and host of a URL, e.g. for displaying config."""
        if not url:
            return "(not set)"
        match = re.match(r"^(https?://[^/]+)", url)
        if not match:
            return cls.REDACTED
        return f"{match.group(1)}/{cls.REDACTED}"

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Sanitize dictionary values recursively.

        String values under keys that look sensitive are masked outright.
        Numbers and flags under such keys (e.g. webhook timeouts) are kept.
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            sensitive = any(word in key.lower() for word in cls.SENSITIVE_KEYS)
            if sensitive and isinstance(value, str):
                result[key] = cls.mask_url(value)
            elif isinstance(value, dict):
                result[key] = cls.sanitize_dict(value)
            elif isinstance(value, str):
                result[key] = cls.sanitize(value)
            else:
                result[key] = value
        return result


__all__ = ["LogSanitizer"]
