"""Notification module.

Builds human-readable scaling notifications and delivers them to a chat
webhook (Slack-compatible ``{"text": ...}`` payload).

Philosophy:
- Structure first: messages are assembled from named sections and rendered
  to text only at the transport boundary
- Never fatal: a webhook outage is logged, it does not abort a scaling run
- Security: error text is sanitized, the webhook URL is never logged

Public API:
    Severity: Notification severity levels
    NotificationBuilder: Section-based message builder
    SlackWebhookNotifier: Webhook delivery via requests
    LoggingNotifier: Fallback when no webhook is configured
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import requests

from azsqlscale.log_sanitizer import LogSanitizer
from azsqlscale.retry_handler import retry_with_exponential_backoff, should_retry_http_error

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Notification severity levels."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def icon(self) -> str:
        return {
            Severity.INFO: ":information_source:",
            Severity.SUCCESS: ":white_check_mark:",
            Severity.WARNING: ":warning:",
            Severity.CRITICAL: ":rotating_light:",
        }[self]


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity) -> bool: ...


# Rendering order of sections; anything else is appended after these
SECTION_ORDER = ("resource", "capacity", "details", "errors", "trigger")
SECTION_TITLES = {
    "resource": "Resource",
    "capacity": "Capacity",
    "details": "Details",
    "errors": "Errors",
    "trigger": "Trigger context",
}


@dataclass
class NotificationBuilder:
    """Assemble a notification from a header and named sections.

    Example:
        >>> text = (
        ...     NotificationBuilder("Scale-up complete", Severity.SUCCESS)
        ...     .resource(server="sql-prod", database="orders")
        ...     .capacity(previous=8, target=10, final=10)
        ...     .render()
        ... )
    """

    title: str
    severity: Severity = Severity.INFO
    summary: str | None = None
    sections: dict[str, list[tuple[str, str]]] = field(default_factory=dict)

    def add(self, section: str, label: str, value: object) -> "NotificationBuilder":
        if value is None:
            return self
        self.sections.setdefault(section, []).append((label, str(value)))
        return self

    def resource(
        self,
        server: str,
        database: str,
        resource_group: str | None = None,
        resource_id: str | None = None,
        role: str | None = None,
    ) -> "NotificationBuilder":
        self.add("resource", "Server", server)
        self.add("resource", "Database", database)
        self.add("resource", "Role", role)
        self.add("resource", "Resource group", resource_group)
        self.add("resource", "Resource id", resource_id)
        return self

    def capacity(
        self, previous: int | None = None, target: int | None = None, final: int | None = None
    ) -> "NotificationBuilder":
        self.add("capacity", "Before", _vcores(previous))
        self.add("capacity", "Target", _vcores(target))
        self.add("capacity", "After", _vcores(final))
        return self

    def detail(self, label: str, value: object) -> "NotificationBuilder":
        return self.add("details", label, value)

    def errors(self, messages: Iterable[str]) -> "NotificationBuilder":
        for index, message in enumerate(messages, 1):
            self.add("errors", str(index), message)
        return self

    def trigger(self, pairs: Iterable[tuple[str, str]]) -> "NotificationBuilder":
        for label, value in pairs:
            self.add("trigger", label, value)
        return self

    def render(self) -> str:
        """Serialize to Slack mrkdwn text. Secrets are redacted."""
        lines = [f"{self.severity.icon} *{self.title}*"]
        if self.summary:
            lines.append(self.summary)

        ordered = [name for name in SECTION_ORDER if name in self.sections]
        ordered += [name for name in self.sections if name not in SECTION_ORDER]

        for name in ordered:
            lines.append("")
            lines.append(f"*{SECTION_TITLES.get(name, name.title())}*")
            for label, value in self.sections[name]:
                lines.append(f"• {label}: {value}")

        return LogSanitizer.sanitize("\n".join(lines))


def _vcores(value: int | None) -> str | None:
    return None if value is None else f"{value} vCores"


def _is_retryable_post_error(error: Exception) -> bool:
    response = getattr(error, "response", None)
    if response is None:
        return True
    return should_retry_http_error(response.status_code)


class SlackWebhookNotifier:
    """Post notifications to a Slack-compatible incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        username: str | None = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
    ) -> None:
        if not webhook_url.startswith("https://"):
            raise ValueError("Webhook URL must use https://")
        self.webhook_url = webhook_url
        self.username = username
        self.timeout = timeout
        self.max_attempts = max_attempts

    def build_payload(self, message: str) -> dict[str, str]:
        payload = {"text": message}
        if self.username:
            payload["username"] = self.username
        return payload

    def notify(self, message: str, severity: Severity) -> bool:
        """Send a message. Returns False (and logs) if delivery fails."""
        payload = self.build_payload(message)

        @retry_with_exponential_backoff(
            max_attempts=self.max_attempts,
            initial_delay=1.0,
            max_delay=10.0,
            retryable_exceptions=(requests.RequestException,),
            should_retry=_is_retryable_post_error,
        )
        def _post() -> None:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            if response.status_code >= 300:
                raise requests.HTTPError(
                    f"Webhook returned {response.status_code}: {response.text[:200]}",
                    response=response,
                )

        try:
            _post()
        except requests.RequestException as e:
            logger.warning(
                f"Failed to send {severity.value} notification: {LogSanitizer.sanitize(str(e))}"
            )
            return False

        logger.debug(f"Sent {severity.value} notification")
        return True


class LoggingNotifier:
    """Write notifications to the log instead of a webhook."""

    LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.SUCCESS: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.CRITICAL: logging.ERROR,
    }

    def notify(self, message: str, severity: Severity) -> bool:
        logger.log(self.LEVELS[severity], f"[notification:{severity.value}]\n{message}")
        return True


def build_notifier(webhook_url: str | None, username: str | None = None,
                   timeout: float = 10.0, max_attempts: int = 3) -> Notifier:
    """Webhook notifier when a URL is configured, log notifier otherwise."""
    if not webhook_url:
        logger.info("No webhook URL configured; notifications go to the log only")
        return LoggingNotifier()
    return SlackWebhookNotifier(
        webhook_url, username=username, timeout=timeout, max_attempts=max_attempts
    )


__all__ = [
    "LoggingNotifier",
    "NotificationBuilder",
    "Notifier",
    "Severity",
    "SlackWebhookNotifier",
    "build_notifier",
]
