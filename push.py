"""
Push delivery collaborators.

The ledger core only builds payloads; getting them onto a device is the job
of whatever sits behind ``PushDelivery``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import requests
from pydantic import BaseModel, Field

from config import get_settings


logger = logging.getLogger(__name__)


class PushPayload(BaseModel):
    title: str
    body: str
    icon: Optional[str] = "/icon-192.png"
    badge: Optional[str] = "/icon-192.png"
    tag: Optional[str] = None
    data: dict[str, Any] = Field(
        default_factory=lambda: {"url": "/", "action": "open-app"}
    )


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class PushDelivery(ABC):
    @abstractmethod
    def send(self, user_id: int, payload: PushPayload) -> DeliveryResult:
        """
        Deliver a payload to every device of a user.

        Args:
            user_id: Recipient
            payload: Notification content

        Returns:
            DeliveryResult describing the outcome; never raises for
            transport problems.
        """


class LoggingPushDelivery(PushDelivery):
    """Writes payloads to the log; used when no transport is configured."""

    def send(self, user_id: int, payload: PushPayload) -> DeliveryResult:
        logger.info(
            f"push_log: user_id={user_id} tag={payload.tag} title={payload.title!r}"
        )
        return DeliveryResult(success=True, channel="log")


class WebhookPushDelivery(PushDelivery):
    """Posts payloads to a push gateway webhook."""

    def __init__(self, url: str, timeout: float = 10) -> None:
        self.url = url
        self.timeout = timeout

    def send(self, user_id: int, payload: PushPayload) -> DeliveryResult:
        try:
            response = requests.post(
                self.url,
                json={"user_id": user_id, "payload": payload.model_dump()},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            return DeliveryResult(
                success=False, channel="webhook", error=f"Connection error: {e}"
            )

        if response.ok:
            return DeliveryResult(success=True, channel="webhook")
        return DeliveryResult(
            success=False,
            channel="webhook",
            error=f"HTTP {response.status_code}: {response.text}",
        )


def delivery_from_settings() -> PushDelivery:
    settings = get_settings()
    if settings.push_webhook_url:
        return WebhookPushDelivery(
            settings.push_webhook_url, timeout=settings.push_timeout_secs
        )
    return LoggingPushDelivery()
