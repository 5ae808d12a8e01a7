"""
Component Tests for the Email Campaign Repository

Verifies SQL shape and row mapping against a mocked PostgreSQL client.
"""

import json

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.email_campaign_service.campaign_repository import (
    CampaignRepository,
    json_dumps,
)
from tests.component.mocks import MockAsyncPostgresClient
from tests.contracts.email_campaign.data_contract import (
    CampaignStatus,
    DeliveryEventType,
)


def campaign_row(campaign, **overrides):
    """Row as asyncpg returns it: JSONB columns as text"""
    row = {
        "campaign_id": campaign.campaign_id,
        "name": campaign.name,
        "subject": campaign.subject,
        "html_content": campaign.html_content,
        "text_content": campaign.text_content,
        "template_id": None,
        "recipient_list": json_dumps(campaign.recipient_list),
        "recipient_filter": json_dumps(campaign.recipient_filter),
        "status": campaign.status.value,
        "scheduled_at": campaign.scheduled_at,
        "active_job_id": campaign.active_job_id,
        "sent_at": None,
        "failure_reason": None,
        "settings": json_dumps(campaign.settings),
        "total_sent": 0,
        "total_delivered": 0,
        "total_opened": 0,
        "total_clicked": 0,
        "total_bounced": 0,
        "unique_opens": 0,
        "unique_clicks": 0,
        "is_active": True,
        "created_by": "system",
        "last_modified_by": None,
        "created_at": campaign.created_at,
        "updated_at": campaign.updated_at,
    }
    row.update(overrides)
    return row


@pytest.fixture
def db():
    return MockAsyncPostgresClient()


@pytest.fixture
def repository(db):
    return CampaignRepository(db=db)


class TestCampaignPersistence:
    """Tests for campaign CRUD SQL"""

    @pytest.mark.asyncio
    async def test_initialize_applies_migrations(self, repository, db):
        await repository.initialize()

        assert len(db.scripts) >= 1
        assert "CREATE SCHEMA IF NOT EXISTS email_campaign" in db.scripts[0]
        assert any("recipient_engagement" in script for script in db.scripts)

    @pytest.mark.asyncio
    async def test_save_round_trips_row(self, repository, db, factory):
        campaign = factory.make_campaign(recipient_count=2)
        db.set_row_response(campaign_row(campaign))

        saved = await repository.save_campaign(campaign)

        db.assert_query_executed("INSERT INTO email_campaign.campaigns", "query_row")
        params = db.get_last_query()[2]
        assert params[0] == campaign.campaign_id
        assert json.loads(params[6])[0]["email"] == "user0@example.com"
        assert saved.recipient_list == campaign.recipient_list
        assert saved.settings == campaign.settings

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, repository, db):
        db.set_row_response(None)
        assert await repository.get_campaign("ecmp_missing") is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_column(self, repository):
        with pytest.raises(ValueError):
            await repository.update_campaign("ecmp_1", {"status": "sent"})

    @pytest.mark.asyncio
    async def test_errors_propagate(self, repository, db):
        db.set_error(RuntimeError("connection refused"))
        with pytest.raises(RuntimeError):
            await repository.get_campaign("ecmp_1")


class TestStatusCompareAndSet:
    """Tests for the guarded status update"""

    @pytest.mark.asyncio
    async def test_transition_guards_on_expected(self, repository, db, factory):
        campaign = factory.make_campaign(status=CampaignStatus.SENDING)
        db.set_row_response(campaign_row(campaign))

        result = await repository.transition_status(
            campaign.campaign_id,
            expected=[CampaignStatus.DRAFT, CampaignStatus.SCHEDULED],
            target=CampaignStatus.SENDING,
            active_job_id=None,
        )

        _, query, params = db.get_last_query()
        assert "status = ANY(" in query
        assert "status = $" in query
        assert params[-1] == ["draft", "scheduled"]
        assert params[-2] == campaign.campaign_id
        assert "sending" in params
        assert result.status == CampaignStatus.SENDING

    @pytest.mark.asyncio
    async def test_transition_lost_returns_none(self, repository, db):
        db.set_row_response(None)

        result = await repository.transition_status(
            "ecmp_1", expected=[CampaignStatus.DRAFT], target=CampaignStatus.SENDING
        )

        assert result is None


class TestAnalyticsAndEvents:
    """Tests for counters and the event log"""

    @pytest.mark.asyncio
    async def test_increment_is_relative(self, repository, db):
        await repository.increment_analytics("ecmp_1", {"total_opened": 1, "unique_opens": 1})

        _, query, params = db.get_last_query()
        assert "total_opened = total_opened + $1" in query
        assert "unique_opens = unique_opens + $2" in query
        assert params[0] == 1 and params[-1] == "ecmp_1"

    @pytest.mark.asyncio
    async def test_increment_rejects_unknown_counter(self, repository):
        with pytest.raises(ValueError):
            await repository.increment_analytics("ecmp_1", {"status": 1})

    @pytest.mark.asyncio
    async def test_append_conflict_reports_duplicate(self, repository, db, factory):
        event = factory.make_delivery_event("ecmp_1", DeliveryEventType.DELIVERED, idempotency_key="k1")

        db.set_row_response({"event_id": event.event_id})
        assert await repository.append_event(event) is True

        db.set_row_response(None)
        assert await repository.append_event(event) is False
        db.assert_query_executed("ON CONFLICT (idempotency_key) DO NOTHING")

    @pytest.mark.asyncio
    async def test_first_engagement_decided_by_insert(self, repository, db):
        db.set_row_response({"campaign_id": "ecmp_1"})
        assert await repository.claim_first_engagement(
            "ecmp_1", "A@example.com", DeliveryEventType.OPENED
        ) is True

        db.set_row_response(None)
        assert await repository.claim_first_engagement(
            "ecmp_1", "a@example.com", DeliveryEventType.OPENED
        ) is False

        _, query, params = db.get_last_query()
        assert "ON CONFLICT (campaign_id, event_type, recipient_email) DO NOTHING" in query
        assert "lower($3)" in query
        assert params == ["ecmp_1", "opened", "a@example.com"]

    @pytest.mark.asyncio
    async def test_aggregate_events(self, repository, db):
        db.set_rows_response([
            {"event_type": "sent", "total": 3, "unique_recipients": 3},
            {"event_type": "opened", "total": 5, "unique_recipients": 2},
        ])

        result = await repository.aggregate_events("ecmp_1")

        assert result == {
            "sent": {"total": 3, "unique": 3},
            "opened": {"total": 5, "unique": 2},
        }

    @pytest.mark.asyncio
    async def test_list_events_maps_rows(self, repository, db, factory):
        event = factory.make_delivery_event("ecmp_1", DeliveryEventType.OPENED)
        db.set_rows_response([{
            "event_id": event.event_id,
            "campaign_id": "ecmp_1",
            "recipient_email": event.recipient_email,
            "event_type": "opened",
            "message_id": None,
            "detail": '{"user_agent": "x"}',
            "idempotency_key": None,
            "occurred_at": event.timestamp,
        }])

        events = await repository.list_events("ecmp_1", event_type=DeliveryEventType.OPENED, limit=10)

        assert events[0].event_type == DeliveryEventType.OPENED
        assert events[0].detail == {"user_agent": "x"}
        assert db.get_last_query()[2] == ["ecmp_1", "opened", 10]
