"""
Push Notifier — deliver a rendered alert to a device token.

The push gateway is an HTTP service that fans out to FCM/APNs. The
engine only needs a yes/no answer: was the message accepted?
"""

from typing import Optional, Protocol

import httpx
import structlog

from flowwatch.alerting.schemas import PushMessage
from flowwatch.config import settings

logger = structlog.get_logger(__name__)


class PushNotifier(Protocol):
    """Protocol for push delivery backends."""

    async def send(self, message: PushMessage) -> bool:
        """Returns True if the gateway accepted the message."""
        ...


class HttpPushNotifier:
    """
    POSTs messages to the configured push gateway.

    Never raises: transport errors, timeouts and non-2xx responses all
    report False.
    """

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gateway_url = gateway_url if gateway_url is not None else settings.push_gateway_url
        self.api_key = api_key if api_key is not None else settings.push_api_key
        self.timeout = timeout or settings.push_timeout_seconds
        self._transport = transport

    @staticmethod
    def _build_payload(message: PushMessage) -> dict:
        notification = {"title": message.title, "body": message.body}
        if message.color:
            notification["color"] = message.color
        return {
            "token": message.token,
            "notification": notification,
            "data": message.data,
            "priority": message.priority,
        }

    async def send(self, message: PushMessage) -> bool:
        if not self.gateway_url:
            logger.warning("push_gateway_not_configured")
            return False

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.gateway_url, json=self._build_payload(message), headers=headers
                )
        except Exception as e:
            logger.error(
                "push_dispatch_error",
                alert_id=message.data.get("alertId"),
                error=str(e),
            )
            return False

        if response.status_code < 400:
            logger.info(
                "push_sent",
                alert_id=message.data.get("alertId"),
                status=response.status_code,
            )
            return True
        logger.warning(
            "push_rejected",
            alert_id=message.data.get("alertId"),
            status=response.status_code,
        )
        return False
