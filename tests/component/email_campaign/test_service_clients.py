"""
Component Tests for External Adapters

Mail transport, account directory and admin notifier against
httpx.MockTransport.
"""

import json

import httpx
import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.email_campaign_service.clients import (
    AccountDirectoryClient,
    AdminNotificationClient,
    ResendMailTransport,
)
from microservices.email_campaign_service.protocols import (
    RecipientSendError,
    TransportUnavailableError,
)


def resend_transport(handler) -> ResendMailTransport:
    client = httpx.AsyncClient(
        base_url="https://api.resend.test",
        transport=httpx.MockTransport(handler),
    )
    return ResendMailTransport(api_key=None, from_email="news@shop.example.com", http_client=client)


class TestResendMailTransport:
    """Tests for the Resend adapter"""

    @pytest.mark.asyncio
    async def test_send_builds_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "re_123"})

        transport = resend_transport(handler)

        result = await transport.send_email(
            to="a@example.com",
            subject="Hi",
            html="<p>Hi</p>",
            from_name="StyleShop",
            reply_to="help@example.com",
            text="Hi",
        )

        assert result == {"message_id": "re_123"}
        assert seen["path"] == "/emails"
        assert seen["body"]["from"] == "StyleShop <news@shop.example.com>"
        assert seen["body"]["to"] == ["a@example.com"]
        assert seen["body"]["reply_to"] == "help@example.com"
        await transport.close()

    @pytest.mark.asyncio
    async def test_client_error_is_recipient_error(self):
        transport = resend_transport(lambda request: httpx.Response(422, json={"message": "bad to"}))

        with pytest.raises(RecipientSendError) as exc_info:
            await transport.send_email(to="bad", subject="s", html="h")

        assert not isinstance(exc_info.value, TransportUnavailableError)
        assert exc_info.value.recipient_email == "bad"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 503])
    async def test_throttle_and_outage_are_unavailable(self, status_code):
        transport = resend_transport(lambda request: httpx.Response(status_code))

        with pytest.raises(TransportUnavailableError):
            await transport.send_email(to="a@example.com", subject="s", html="h")

    @pytest.mark.asyncio
    async def test_unconfigured_transport_raises(self):
        transport = ResendMailTransport(api_key=None, from_email="news@shop.example.com")

        assert await transport.health_check() is False
        with pytest.raises(TransportUnavailableError):
            await transport.send_email(to="a@example.com", subject="s", html="h")


class TestAccountDirectoryClient:
    """Tests for the account_service directory"""

    @pytest.mark.asyncio
    async def test_paginates_and_filters_by_role(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(dict(request.url.params))
            page = int(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json={
                    "accounts": [
                        {"email": "a@example.com", "name": "A"},
                        {"email": "off@example.com", "name": "Off", "is_active": False},
                    ],
                    "has_next": True,
                })
            return httpx.Response(200, json={
                "accounts": [{"email": "b@example.com", "name": None}],
                "has_next": False,
            })

        client = AccountDirectoryClient("http://accounts.test", transport=httpx.MockTransport(handler))

        rows = await client.find_recipients(role="customer")

        assert rows == [
            {"email": "a@example.com", "name": "A"},
            {"email": "b@example.com", "name": None},
        ]
        assert len(requests) == 2
        assert requests[0]["role"] == "customer"
        assert requests[0]["is_active"] == "true"

    @pytest.mark.asyncio
    async def test_criteria_passed_as_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"accounts": [], "has_next": False})

        client = AccountDirectoryClient("http://accounts.test", transport=httpx.MockTransport(handler))

        assert await client.find_by_criteria({"tier": "gold", "verified": True, "city": None}) == []
        assert seen["tier"] == "gold"
        assert seen["verified"] == "true"
        assert "city" not in seen

    @pytest.mark.asyncio
    async def test_directory_error_raises(self):
        client = AccountDirectoryClient(
            "http://accounts.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await client.find_recipients()


class TestAdminNotificationClient:
    """Tests for the admin notifier"""

    @pytest.mark.asyncio
    async def test_notification_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        client = AdminNotificationClient("http://notify.test", transport=httpx.MockTransport(handler))

        await client.notify("campaign_sent", {"campaign_id": "ecmp_1", "campaign_name": "Spring", "total_sent": 5, "failures": 1})

        assert seen["path"] == "/api/v1/notifications/send"
        assert seen["body"]["recipient_id"] == "admin"
        assert seen["body"]["subject"] == "Campaign Sent"
        assert "sent to 5 recipients (1 failures)" in seen["body"]["content"]
        assert seen["body"]["metadata"]["event"] == "campaign_sent"

    @pytest.mark.asyncio
    async def test_notification_errors_swallowed(self):
        client = AdminNotificationClient(
            "http://notify.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        await client.notify("campaign_failed", {"campaign_id": "ecmp_1", "reason": "no recipients"})
