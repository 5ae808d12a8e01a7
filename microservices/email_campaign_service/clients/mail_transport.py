"""
Resend Mail Transport

Sends campaign messages through the Resend HTTP API.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..protocols import RecipientSendError, TransportUnavailableError

logger = logging.getLogger(__name__)


class ResendMailTransport:
    """Mail transport backed by Resend"""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.from_email = from_email
        self.base_url = base_url
        self.enabled = bool(api_key or http_client)

        if http_client:
            self.client = http_client
        elif api_key:
            self.client = httpx.AsyncClient(
                base_url=base_url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=timeout,
            )
        else:
            self.client = None
            logger.warning("Resend API key not configured. Campaign email sending disabled.")

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        from_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one message.

        Returns:
            {"message_id": provider id}

        Raises:
            TransportUnavailableError: Provider not configured or unreachable
            RecipientSendError: Provider rejected the message
        """
        if not self.client:
            raise TransportUnavailableError("Email client not configured", to)

        email_data: Dict[str, Any] = {
            "from": f"{from_name} <{self.from_email}>" if from_name else self.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            email_data["text"] = text
        if reply_to:
            email_data["reply_to"] = reply_to

        try:
            response = await self.client.post("/emails", json=email_data)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = f"Email API error: {e.response.status_code} - {e.response.text}"
            if e.response.status_code >= 500 or e.response.status_code == 429:
                raise TransportUnavailableError(message, to) from e
            raise RecipientSendError(message, to) from e
        except httpx.HTTPError as e:
            raise TransportUnavailableError(f"Email API unreachable: {e}", to) from e

        return {"message_id": response.json().get("id")}

    async def health_check(self) -> bool:
        return self.client is not None

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()


__all__ = ["ResendMailTransport"]
