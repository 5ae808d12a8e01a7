"""
Delivery Event Recorder

Append-only delivery log with campaign rollup counters, plus the read side
used by the analytics endpoint.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from .models import (
    Campaign,
    CampaignAnalytics,
    CampaignAnalyticsResponse,
    DeliveryEvent,
    DeliveryEventType,
    EventTypeStats,
)
from .protocols import CampaignStoreProtocol, DeliveryEventStoreProtocol

logger = logging.getLogger(__name__)

# Engagement events that bump a rollup counter; sent/failed are tallied by the dispatcher
ROLLUP_COUNTERS = {
    DeliveryEventType.DELIVERED: "total_delivered",
    DeliveryEventType.OPENED: "total_opened",
    DeliveryEventType.CLICKED: "total_clicked",
    DeliveryEventType.BOUNCED: "total_bounced",
}

UNIQUE_COUNTERS = {
    DeliveryEventType.OPENED: "unique_opens",
    DeliveryEventType.CLICKED: "unique_clicks",
}

RECENT_EVENTS_LIMIT = 50


def make_idempotency_key(
    campaign_id: str,
    recipient_email: str,
    event_type: DeliveryEventType,
    message_id: Optional[str],
) -> Optional[str]:
    """Stable key for events that carry a provider message id"""
    if not message_id:
        return None
    raw = f"{campaign_id}|{recipient_email.lower()}|{event_type.value}|{message_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class EventRecorder:
    """Records per-recipient delivery outcomes"""

    def __init__(
        self,
        event_store: DeliveryEventStoreProtocol,
        campaign_store: CampaignStoreProtocol,
    ):
        self.event_store = event_store
        self.campaign_store = campaign_store

    async def record(
        self,
        campaign_id: str,
        recipient_email: str,
        event_type: DeliveryEventType,
        message_id: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> Optional[DeliveryEvent]:
        """
        Append a delivery event and update rollup counters.

        Never raises: storage errors are logged so a recording failure cannot
        abort a dispatch run. Returns the stored event, or None when it was a
        duplicate or could not be stored.
        """
        try:
            event_type = DeliveryEventType(event_type)
            event = DeliveryEvent(
                campaign_id=campaign_id,
                recipient_email=recipient_email,
                event_type=event_type,
                message_id=message_id,
                detail=dict(detail or {}),
                idempotency_key=make_idempotency_key(
                    campaign_id, recipient_email, event_type, message_id
                ),
            )

            appended = await self.event_store.append_event(event)
            if not appended:
                logger.debug(
                    f"Duplicate {event_type.value} event ignored for {recipient_email} "
                    f"in campaign {campaign_id}"
                )
                return None

            counters = {}
            if event_type in ROLLUP_COUNTERS:
                counters[ROLLUP_COUNTERS[event_type]] = 1
            if event_type in UNIQUE_COUNTERS and await self.event_store.claim_first_engagement(
                campaign_id, recipient_email, event_type
            ):
                counters[UNIQUE_COUNTERS[event_type]] = 1
            if counters:
                await self.campaign_store.increment_analytics(campaign_id, counters)

            return event

        except Exception as e:
            logger.error(
                f"Failed to record {event_type} event for {recipient_email} "
                f"in campaign {campaign_id}: {e}"
            )
            return None

    # ====================
    # Read Side
    # ====================

    async def get_event_analytics(self, campaign_id: str) -> Dict[str, EventTypeStats]:
        """Totals and unique recipients per event type"""
        aggregates = await self.event_store.aggregate_events(campaign_id)
        return {
            event_type: EventTypeStats(
                total=stats.get("total", 0),
                unique=stats.get("unique", 0),
            )
            for event_type, stats in aggregates.items()
        }

    async def get_recent_events(
        self,
        campaign_id: str,
        event_type: Optional[DeliveryEventType] = None,
        limit: int = RECENT_EVENTS_LIMIT,
    ) -> List[DeliveryEvent]:
        return await self.event_store.list_events(campaign_id, event_type=event_type, limit=limit)

    async def get_campaign_analytics(self, campaign: Campaign) -> CampaignAnalyticsResponse:
        """Campaign summary with per-type breakdown and the most recent events"""
        event_analytics = await self.get_event_analytics(campaign.campaign_id)
        recent_events = await self.get_recent_events(campaign.campaign_id)
        return CampaignAnalyticsResponse(
            campaign_id=campaign.campaign_id,
            name=campaign.name,
            status=campaign.status,
            sent_at=campaign.sent_at,
            analytics=campaign.analytics,
            event_analytics=event_analytics,
            recent_events=recent_events,
        )

    async def rebuild_rollup(self, campaign_id: str) -> CampaignAnalytics:
        """Recompute the rollup from the event log"""
        stats = await self.get_event_analytics(campaign_id)

        def total(event_type: DeliveryEventType) -> int:
            return stats.get(event_type.value, EventTypeStats()).total

        def unique(event_type: DeliveryEventType) -> int:
            return stats.get(event_type.value, EventTypeStats()).unique

        analytics = CampaignAnalytics(
            total_sent=total(DeliveryEventType.SENT),
            total_delivered=total(DeliveryEventType.DELIVERED),
            total_opened=total(DeliveryEventType.OPENED),
            total_clicked=total(DeliveryEventType.CLICKED),
            total_bounced=total(DeliveryEventType.BOUNCED),
            unique_opens=unique(DeliveryEventType.OPENED),
            unique_clicks=unique(DeliveryEventType.CLICKED),
        )
        await self.campaign_store.set_analytics(campaign_id, analytics)
        logger.info(f"Rebuilt analytics rollup for campaign {campaign_id}")
        return analytics


__all__ = ["EventRecorder", "make_idempotency_key", "ROLLUP_COUNTERS", "UNIQUE_COUNTERS"]
