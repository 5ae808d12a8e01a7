"""
Notification Service Client

Admin notifications (campaign created / sent / failed) via notification_service.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class AdminNotificationClient:
    """Fire-and-forget admin notifier"""

    def __init__(
        self,
        base_url: str,
        recipient_id: str = "admin",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.recipient_id = recipient_id
        self.timeout = timeout
        self._transport = transport

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        """Send an in-app admin notification; errors are logged, never raised"""
        request_data = {
            "type": "in_app",
            "recipient_id": self.recipient_id,
            "subject": event.replace("_", " ").title(),
            "content": _describe(event, payload),
            "metadata": {"event": event, **payload},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/notifications/send",
                    json=request_data,
                )
                response.raise_for_status()
                logger.debug(f"Admin notification sent: {event}")

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending {event} notification: {e.response.text}")

        except Exception as e:
            logger.error(f"Error sending {event} notification: {e}")


def _describe(event: str, payload: Dict[str, Any]) -> str:
    name = payload.get("campaign_name") or payload.get("campaign_id")
    if event == "campaign_sent":
        return (
            f'Campaign "{name}" was sent to {payload.get("total_sent", 0)} recipients '
            f'({payload.get("failures", 0)} failures).'
        )
    if event == "campaign_failed":
        return f'Campaign "{name}" failed: {payload.get("reason")}'
    if event == "campaign_created":
        return f'Campaign "{name}" was created.'
    return f"{event}: {name}"


__all__ = ["AdminNotificationClient"]
