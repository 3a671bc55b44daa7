from __future__ import annotations

import logging
import os
from typing import Protocol

import httpx

NOTIFICATION_SINK = os.getenv("NOTIFICATION_SINK", "log").strip().lower()
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "").strip()
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5.0"))

logger = logging.getLogger(__name__)


class NotificationSinkError(Exception):
    pass


class NotificationSink(Protocol):
    def send(self, recipients: list[str], subject: str, body: str) -> None: ...


class LoggingNotificationSink:
    def send(self, recipients: list[str], subject: str, body: str) -> None:
        logger.info("notification to %s: %s", ", ".join(recipients), subject)


class WebhookNotificationSink:
    """Posts each message as JSON to a mail relay (or any HTTP endpoint)."""

    def __init__(self, url: str, timeout_seconds: float = NOTIFICATION_TIMEOUT_SECONDS) -> None:
        if not url:
            raise NotificationSinkError("NOTIFICATION_WEBHOOK_URL is not set")
        self._url = url
        self._timeout = timeout_seconds

    def send(self, recipients: list[str], subject: str, body: str) -> None:
        response = httpx.post(
            self._url,
            json={"to": recipients, "subject": subject, "text": body},
            timeout=self._timeout,
        )
        response.raise_for_status()


def build_notification_sink() -> NotificationSink:
    if NOTIFICATION_SINK == "log":
        return LoggingNotificationSink()
    if NOTIFICATION_SINK == "webhook":
        return WebhookNotificationSink(NOTIFICATION_WEBHOOK_URL)
    raise NotificationSinkError(f"unsupported notification sink: {NOTIFICATION_SINK}")
