"""
Component Test Fixtures for Email Campaign Service

Provides in-memory stores and recording collaborators so the scheduler,
dispatcher and service run end to end without PostgreSQL or a mail provider.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.email_campaign_service.campaign_service import EmailCampaignService
from microservices.email_campaign_service.config import CampaignEngineConfig
from microservices.email_campaign_service.dispatcher import CampaignDispatcher
from microservices.email_campaign_service.event_recorder import EventRecorder
from microservices.email_campaign_service.protocols import (
    RecipientSendError,
    TransportUnavailableError,
)
from microservices.email_campaign_service.recipient_resolver import RecipientResolver
from microservices.email_campaign_service.scheduler import CampaignScheduler
from tests.contracts.email_campaign.data_contract import (
    Campaign,
    CampaignAnalytics,
    CampaignStatus,
    DeliveryEvent,
    DeliveryEventType,
    EmailCampaignTestDataFactory,
    MissedFirePolicy,
)

FRONTEND_URL = "https://shop.example.com"
API_URL = "http://localhost:8252"

ANALYTICS_FIELDS = {
    "total_sent",
    "total_delivered",
    "total_opened",
    "total_clicked",
    "total_bounced",
    "unique_opens",
    "unique_clicks",
}


# ====================
# Mock Store
# ====================


class MockCampaignStore:
    """In-memory campaign store and delivery event log"""

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.events: List[DeliveryEvent] = []
        self._keys: Set[str] = set()
        self.engaged: Set[tuple] = set()
        self.transition_calls: List[Dict[str, Any]] = []
        self.fail_updates = False
        self.healthy = True
        self.closed = False

    async def initialize(self):
        pass

    async def close(self):
        self.closed = True

    async def health_check(self) -> bool:
        return self.healthy

    def _apply(self, campaign: Campaign, fields: Dict[str, Any]) -> Campaign:
        """Column-level update: counter columns land in the analytics rollup"""
        counters = {k: fields.pop(k) for k in list(fields) if k in ANALYTICS_FIELDS}
        if counters:
            fields["analytics"] = campaign.analytics.model_copy(update=counters)
        return campaign.model_copy(update={**fields, "updated_at": datetime.now(timezone.utc)})

    # Campaigns
    async def save_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.campaign_id] = campaign.model_copy(deep=True)
        return campaign.model_copy(deep=True)

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def update_campaign(self, campaign_id: str, updates: Dict[str, Any]) -> Optional[Campaign]:
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        campaign = self.campaigns.get(campaign_id)
        if not campaign:
            return None
        updated = self._apply(campaign, dict(updates))
        self.campaigns[campaign_id] = updated
        return updated.model_copy(deep=True)

    async def transition_status(
        self,
        campaign_id: str,
        expected: List[CampaignStatus],
        target: CampaignStatus,
        **fields: Any,
    ) -> Optional[Campaign]:
        # No await before the write: atomic under a single event loop
        self.transition_calls.append({"campaign_id": campaign_id, "target": target, **fields})
        campaign = self.campaigns.get(campaign_id)
        if not campaign or campaign.status not in expected:
            return None
        updated = self._apply(campaign, {**fields, "status": target})
        self.campaigns[campaign_id] = updated
        return updated.model_copy(deep=True)

    async def list_campaigns_by_status(
        self, status: CampaignStatus, active_only: bool = True
    ) -> List[Campaign]:
        return [
            c.model_copy(deep=True)
            for c in self.campaigns.values()
            if c.status == status and (c.is_active or not active_only)
        ]

    async def set_analytics(self, campaign_id: str, analytics: CampaignAnalytics) -> None:
        campaign = self.campaigns[campaign_id]
        self.campaigns[campaign_id] = campaign.model_copy(update={"analytics": analytics})

    async def increment_analytics(self, campaign_id: str, counters: Dict[str, int]) -> None:
        campaign = self.campaigns[campaign_id]
        data = campaign.analytics.model_dump(exclude={"open_rate", "click_rate", "bounce_rate"})
        for key, value in counters.items():
            data[key] += value
        self.campaigns[campaign_id] = campaign.model_copy(
            update={"analytics": CampaignAnalytics(**data)}
        )

    # Events
    async def append_event(self, event: DeliveryEvent) -> bool:
        if event.idempotency_key:
            if event.idempotency_key in self._keys:
                return False
            self._keys.add(event.idempotency_key)
        self.events.append(event)
        return True

    async def claim_first_engagement(
        self, campaign_id: str, recipient_email: str, event_type: DeliveryEventType
    ) -> bool:
        # No await before the write: atomic under a single event loop
        key = (campaign_id, DeliveryEventType(event_type).value, recipient_email.lower())
        if key in self.engaged:
            return False
        self.engaged.add(key)
        return True

    async def list_events(
        self,
        campaign_id: str,
        event_type: Optional[DeliveryEventType] = None,
        limit: int = 50,
    ) -> List[DeliveryEvent]:
        events = [
            e for e in self.events
            if e.campaign_id == campaign_id and (event_type is None or e.event_type == event_type)
        ]
        return list(reversed(events))[:limit]

    async def aggregate_events(self, campaign_id: str) -> Dict[str, Dict[str, int]]:
        result: Dict[str, Dict[str, Any]] = {}
        for e in self.events:
            if e.campaign_id != campaign_id:
                continue
            stats = result.setdefault(e.event_type.value, {"total": 0, "emails": set()})
            stats["total"] += 1
            stats["emails"].add(e.recipient_email)
        return {
            event_type: {"total": stats["total"], "unique": len(stats["emails"])}
            for event_type, stats in result.items()
        }

    def events_for(self, campaign_id: str, event_type: DeliveryEventType) -> List[DeliveryEvent]:
        return [e for e in self.events if e.campaign_id == campaign_id and e.event_type == event_type]


# ====================
# Mock Collaborators
# ====================


class MockMailTransport:
    """Records sends; fails for listed addresses"""

    def __init__(self, delay: float = 0.0):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: Set[str] = set()
        self.unavailable_for: Set[str] = set()
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        from_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if to in self.unavailable_for:
                raise TransportUnavailableError("provider unreachable", to)
            if to in self.fail_for:
                raise RecipientSendError(f"rejected: {to}", to)
            message_id = f"msg_{len(self.sent) + 1}"
            self.sent.append({
                "to": to,
                "subject": subject,
                "html": html,
                "text": text,
                "from_name": from_name,
                "reply_to": reply_to,
                "message_id": message_id,
            })
            return {"message_id": message_id}
        finally:
            self.in_flight -= 1

    async def close(self):
        self.closed = True

    @property
    def recipients(self) -> List[str]:
        return [m["to"] for m in self.sent]


class MockDirectory:
    """Account directory with role filtering"""

    def __init__(self, accounts: Optional[List[Dict[str, Any]]] = None):
        self.accounts = accounts or []
        self.error: Optional[Exception] = None

    async def find_recipients(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        if self.error:
            raise self.error
        return [a for a in self.accounts if role is None or a.get("role") == role]

    async def find_by_criteria(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        if self.error:
            raise self.error
        return [
            a for a in self.accounts
            if all(a.get(key) == value for key, value in criteria.items())
        ]


class MockNotificationSink:
    """Records admin notifications"""

    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        self.notifications.append({"event": event, "payload": payload})

    def events(self) -> List[str]:
        return [n["event"] for n in self.notifications]


async def poll_status(store: MockCampaignStore, campaign_id: str, status: CampaignStatus, timeout: float = 5.0):
    """Poll the store until the campaign reaches status"""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        campaign = store.campaigns.get(campaign_id)
        if campaign and campaign.status == status:
            return campaign
        await asyncio.sleep(0.01)
    current = store.campaigns.get(campaign_id)
    raise AssertionError(
        f"Campaign {campaign_id} did not reach {status.value}, "
        f"still {current.status.value if current else 'missing'}"
    )


# ====================
# Fixtures
# ====================


@pytest.fixture
def factory():
    """Provide EmailCampaignTestDataFactory"""
    return EmailCampaignTestDataFactory


@pytest.fixture
def store():
    return MockCampaignStore()


@pytest.fixture
def transport():
    return MockMailTransport()


@pytest.fixture
def directory():
    return MockDirectory([
        {"email": "c1@example.com", "name": "Customer One", "role": "customer"},
        {"email": "c2@example.com", "name": "Customer Two", "role": "customer"},
        {"email": "staff@example.com", "name": "Staff", "role": "admin"},
    ])


@pytest.fixture
def notifier():
    return MockNotificationSink()


@pytest.fixture
def recorder(store):
    return EventRecorder(store, store)


@pytest.fixture
def make_dispatcher(store, transport, directory, recorder, notifier):
    """Build a dispatcher with custom batching"""

    def _make(batch_size: int = 50, max_concurrency: int = 10, batch_delay_seconds: float = 0.0):
        return CampaignDispatcher(
            store=store,
            resolver=RecipientResolver(directory, FRONTEND_URL),
            transport=transport,
            recorder=recorder,
            notifier=notifier,
            api_url=API_URL,
            frontend_url=FRONTEND_URL,
            default_from_name="StyleShop",
            batch_size=batch_size,
            max_concurrency=max_concurrency,
            batch_delay_seconds=batch_delay_seconds,
        )

    return _make


@pytest_asyncio.fixture
async def dispatcher(make_dispatcher):
    dispatcher = make_dispatcher()
    yield dispatcher
    await dispatcher.shutdown(timeout=5)


@pytest_asyncio.fixture
async def scheduler(store, dispatcher):
    scheduler = CampaignScheduler(store, dispatcher, MissedFirePolicy.FIRE)
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture
def service(store, scheduler, dispatcher, recorder, notifier):
    return EmailCampaignService(
        store=store,
        scheduler=scheduler,
        dispatcher=dispatcher,
        recorder=recorder,
        notifier=notifier,
    )


@pytest.fixture
def engine_config():
    """Engine config with no pacing between batches"""
    return CampaignEngineConfig(
        batch_delay_seconds=0.0,
        shutdown_timeout_seconds=5.0,
        frontend_url=FRONTEND_URL,
        api_url=API_URL,
    )


@pytest_asyncio.fixture
async def saved_campaign(store, factory):
    """Draft campaign with three explicit recipients, already stored"""
    campaign = factory.make_campaign(recipient_count=3)
    await store.save_campaign(campaign)
    return campaign


@pytest.fixture
def wait_for_status(store):
    """Await a campaign reaching a status in the mock store"""

    async def _wait(campaign_id: str, status: CampaignStatus, timeout: float = 5.0):
        return await poll_status(store, campaign_id, status, timeout)

    return _wait
