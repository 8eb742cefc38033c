"""Tests for threshold notifications."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import httpx

from src.notifications import NotificationManager


def _mock_client_factory(handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return factory


class TestNotificationManager:
    def test_disabled_without_channels(self):
        nm = NotificationManager()
        nm.slack_webhook = ""
        nm.telegram_token = ""
        nm._enabled = False
        assert nm.status()["enabled"] is False

        with patch("src.notifications.httpx.AsyncClient") as client_cls:
            asyncio.run(nm.notify_threshold_crossed("weekly", 85.0, 850, 1_000, 80))
        client_cls.assert_not_called()

    def test_telegram_needs_chat_id(self):
        nm = NotificationManager(telegram_token="tok", telegram_chat_id="")
        nm.telegram_chat_id = ""
        nm.slack_webhook = ""
        assert nm.status()["telegram_configured"] is False

    def test_slack_payload(self):
        sent: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append({"url": str(request.url), "body": json.loads(request.content)})
            return httpx.Response(200)

        nm = NotificationManager(slack_webhook="https://hooks.slack.test/T000")
        nm.telegram_token = ""
        with patch("src.notifications.httpx.AsyncClient", side_effect=_mock_client_factory(handler)):
            asyncio.run(nm.notify_threshold_crossed("weekly", 85.04, 1_700_800, 2_000_000, 80))

        assert len(sent) == 1
        assert sent[0]["url"] == "https://hooks.slack.test/T000"
        text = sent[0]["body"]["text"]
        assert "above 80%" in text
        assert "Window: weekly" in text
        assert "85.0% (1,700,800 / 2,000,000 tokens)" in text
        assert "⚠️" in text

    def test_critical_level_above_95(self):
        sent: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content)["text"])
            return httpx.Response(200)

        nm = NotificationManager(slack_webhook="https://hooks.slack.test/T000")
        nm.telegram_token = ""
        with patch("src.notifications.httpx.AsyncClient", side_effect=_mock_client_factory(handler)):
            asyncio.run(nm.notify_threshold_crossed("session", 120.0, 240_000, 200_000, 80))
        assert sent[0].startswith("🔴")

    def test_delivery_failure_is_logged_not_raised(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        nm = NotificationManager(slack_webhook="https://hooks.slack.test/T000")
        nm.telegram_token = ""
        with patch("src.notifications.httpx.AsyncClient", side_effect=_mock_client_factory(handler)):
            asyncio.run(nm.notify_threshold_crossed("daily", 90.0, 450_000, 500_000, 80))
        assert "Slack notification failed" in caplog.text
