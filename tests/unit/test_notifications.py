"""Tests for notifications module."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from azsqlscale.notifications import (
    LoggingNotifier,
    NotificationBuilder,
    Severity,
    SlackWebhookNotifier,
    build_notifier,
)

WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXXSECRET"


def response(status_code=200, text="ok"):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


class TestNotificationBuilder:
    def test_render_sections_in_order(self):
        builder = NotificationBuilder("Scale-up complete", Severity.SUCCESS)
        builder.trigger([("Source", "azure-monitor")])
        builder.detail("Step", "2 vCores")
        builder.capacity(previous=8, target=10, final=10)
        builder.resource(server="sql-prod", database="orders", role="primary")

        text = builder.render()
        lines = text.splitlines()

        assert lines[0] == ":white_check_mark: *Scale-up complete*"
        assert text.index("*Resource*") < text.index("*Capacity*")
        assert text.index("*Capacity*") < text.index("*Details*")
        assert text.index("*Details*") < text.index("*Trigger context*")
        assert "• Before: 8 vCores" in lines
        assert "• After: 10 vCores" in lines
        assert "• Server: sql-prod" in lines

    def test_summary_line(self):
        builder = NotificationBuilder("Title", Severity.INFO, summary="Already at target")
        assert builder.render().splitlines()[1] == "Already at target"

    def test_none_values_omitted(self):
        text = (
            NotificationBuilder("Title")
            .resource(server="sql-prod", database="orders", resource_id=None)
            .capacity(previous=8)
            .render()
        )
        assert "Resource id" not in text
        assert "Target" not in text

    def test_errors_numbered(self):
        text = NotificationBuilder("Title").errors(["first", "second"]).render()
        assert "• 1: first" in text
        assert "• 2: second" in text

    def test_render_redacts_secrets(self):
        text = NotificationBuilder("Title").detail("Error", "client_secret=abc123").render()
        assert "abc123" not in text

    @pytest.mark.parametrize(
        ("severity", "icon"),
        [
            (Severity.INFO, ":information_source:"),
            (Severity.WARNING, ":warning:"),
            (Severity.CRITICAL, ":rotating_light:"),
        ],
    )
    def test_severity_icons(self, severity, icon):
        assert NotificationBuilder("T", severity).render().startswith(icon)


class TestSlackWebhookNotifier:
    def test_requires_https(self):
        with pytest.raises(ValueError, match="https"):
            SlackWebhookNotifier("http://hooks.slack.com/services/x")

    def test_payload(self):
        notifier = SlackWebhookNotifier(WEBHOOK, username="azsqlscale")
        assert notifier.build_payload("hello") == {"text": "hello", "username": "azsqlscale"}

    def test_payload_without_username(self):
        assert SlackWebhookNotifier(WEBHOOK).build_payload("hello") == {"text": "hello"}

    @patch("azsqlscale.notifications.requests.post")
    def test_notify_success(self, mock_post: MagicMock) -> None:
        mock_post.return_value = response(200)

        assert SlackWebhookNotifier(WEBHOOK, timeout=5.0).notify("hi", Severity.INFO) is True

        mock_post.assert_called_once_with(WEBHOOK, json={"text": "hi"}, timeout=5.0)

    @patch("azsqlscale.retry_handler.time.sleep")
    @patch("azsqlscale.notifications.requests.post")
    def test_server_error_retried(self, mock_post: MagicMock, mock_sleep: MagicMock) -> None:
        mock_post.side_effect = [response(503, "unavailable"), response(200)]

        assert SlackWebhookNotifier(WEBHOOK).notify("hi", Severity.INFO) is True
        assert mock_post.call_count == 2

    @patch("azsqlscale.retry_handler.time.sleep")
    @patch("azsqlscale.notifications.requests.post")
    def test_client_error_not_retried(self, mock_post: MagicMock, mock_sleep: MagicMock) -> None:
        mock_post.return_value = response(404, "no_service")

        assert SlackWebhookNotifier(WEBHOOK).notify("hi", Severity.CRITICAL) is False
        assert mock_post.call_count == 1

    @patch("azsqlscale.retry_handler.time.sleep")
    @patch("azsqlscale.notifications.requests.post")
    def test_connection_error_never_raises(
        self, mock_post: MagicMock, mock_sleep: MagicMock, caplog
    ) -> None:
        mock_post.side_effect = requests.ConnectionError(f"cannot reach {WEBHOOK}")

        assert SlackWebhookNotifier(WEBHOOK, max_attempts=2).notify("hi", Severity.INFO) is False
        assert mock_post.call_count == 2
        assert "XXXXSECRET" not in caplog.text


class TestLoggingNotifier:
    def test_logs_message(self, caplog):
        caplog.set_level("INFO")
        assert LoggingNotifier().notify("Scale-up complete", Severity.SUCCESS) is True
        assert "Scale-up complete" in caplog.text

    def test_critical_logged_as_error(self, caplog):
        LoggingNotifier().notify("Scale-up failed", Severity.CRITICAL)
        assert caplog.records[-1].levelname == "ERROR"


class TestBuildNotifier:
    def test_no_url_logs(self):
        assert isinstance(build_notifier(None), LoggingNotifier)

    def test_url_posts(self):
        notifier = build_notifier(WEBHOOK, username="bot", timeout=3.0, max_attempts=5)
        assert isinstance(notifier, SlackWebhookNotifier)
        assert notifier.timeout == 3.0
        assert notifier.max_attempts == 5
