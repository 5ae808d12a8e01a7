"""
Email Campaign Service Data Repository

Data access layer - PostgreSQL (Async)
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from core.config import PlatformConfig, get_settings
from core.postgres_client import AsyncPostgresClient

from .models import (
    Campaign,
    CampaignAnalytics,
    CampaignStatus,
    DeliveryEvent,
    DeliveryEventType,
)


class ExtendedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime and pydantic types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        return super().default(obj)


def json_dumps(obj):
    """JSON dumps with Decimal, datetime and model support"""
    return json.dumps(obj, cls=ExtendedJSONEncoder)


def _json_field(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

ANALYTICS_COLUMNS = (
    "total_sent",
    "total_delivered",
    "total_opened",
    "total_clicked",
    "total_bounced",
    "unique_opens",
    "unique_clicks",
)

JSON_COLUMNS = {"recipient_list", "recipient_filter", "settings"}

UPDATABLE_COLUMNS = {
    "name",
    "subject",
    "html_content",
    "text_content",
    "template_id",
    "recipient_list",
    "recipient_filter",
    "scheduled_at",
    "active_job_id",
    "sent_at",
    "failure_reason",
    "settings",
    "is_active",
    "last_modified_by",
    *ANALYTICS_COLUMNS,
}


class CampaignRepository:
    """Email campaign data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        db: Optional[AsyncPostgresClient] = None,
        config: Optional[PlatformConfig] = None,
    ):
        if db is None:
            config = config or get_settings()
            infra = config.infrastructure
            logger.info(f"Connecting to PostgreSQL at {infra.postgres_host}:{infra.postgres_port}")
            db = AsyncPostgresClient.from_config(infra, "email_campaign_service")

        self.db = db
        self.schema = "email_campaign"

        # Table names
        self.campaigns_table = "campaigns"
        self.events_table = "delivery_events"
        self.engagement_table = "recipient_engagement"

    async def initialize(self):
        """Initialize database connection and apply schema migrations"""
        async with self.db:
            for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
                await self.db.execute_script(path.read_text())
                logger.debug(f"Applied migration {path.name}")
        logger.info("Email campaign repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Email campaign repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            async with self.db:
                result = await self.db.query_row("SELECT 1 as healthy")
                return result is not None
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    # ====================
    # Campaign CRUD
    # ====================

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Insert a new campaign"""
        try:
            analytics = campaign.analytics
            query = f'''
                INSERT INTO {self.schema}.{self.campaigns_table} (
                    campaign_id, name, subject, html_content, text_content,
                    template_id, recipient_list, recipient_filter, status,
                    scheduled_at, active_job_id, sent_at, failure_reason, settings,
                    total_sent, total_delivered, total_opened, total_clicked,
                    total_bounced, unique_opens, unique_clicks,
                    is_active, created_by, last_modified_by, created_at, updated_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                    $15, $16, $17, $18, $19, $20, $21, $22, $23, $24, $25, $26
                )
                RETURNING *
            '''
            params = [
                campaign.campaign_id,
                campaign.name,
                campaign.subject,
                campaign.html_content,
                campaign.text_content,
                campaign.template_id,
                json_dumps(campaign.recipient_list),
                json_dumps(campaign.recipient_filter),
                campaign.status.value,
                campaign.scheduled_at,
                campaign.active_job_id,
                campaign.sent_at,
                campaign.failure_reason,
                json_dumps(campaign.settings),
                analytics.total_sent,
                analytics.total_delivered,
                analytics.total_opened,
                analytics.total_clicked,
                analytics.total_bounced,
                analytics.unique_opens,
                analytics.unique_clicks,
                campaign.is_active,
                campaign.created_by,
                campaign.last_modified_by,
                campaign.created_at,
                campaign.updated_at,
            ]

            async with self.db:
                row = await self.db.query_row(query, params=params)

            return self._row_to_campaign(row) if row else campaign

        except Exception as e:
            logger.error(f"Error saving campaign: {e}", exc_info=True)
            raise

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE campaign_id = $1
            '''

            async with self.db:
                result = await self.db.query_row(query, params=[campaign_id])

            return self._row_to_campaign(result) if result else None

        except Exception as e:
            logger.error(f"Error getting campaign {campaign_id}: {e}")
            raise

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any]
    ) -> Optional[Campaign]:
        """Update campaign fields (status changes go through transition_status)"""
        try:
            if not updates:
                return await self.get_campaign(campaign_id)

            set_clauses, params = self._build_set_clauses(updates)

            params.append(campaign_id)
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET {", ".join(set_clauses)}
                WHERE campaign_id = ${len(params)}
                RETURNING *
            '''

            async with self.db:
                result = await self.db.query_row(query, params=params)

            return self._row_to_campaign(result) if result else None

        except Exception as e:
            logger.error(f"Error updating campaign {campaign_id}: {e}")
            raise

    async def transition_status(
        self,
        campaign_id: str,
        expected: List[CampaignStatus],
        target: CampaignStatus,
        **fields: Any,
    ) -> Optional[Campaign]:
        """Compare-and-set the campaign status in a single statement"""
        try:
            set_clauses, params = self._build_set_clauses(fields)

            params.append(CampaignStatus(target).value)
            set_clauses.insert(0, f"status = ${len(params)}")

            params.append(campaign_id)
            id_param = len(params)
            params.append([CampaignStatus(s).value for s in expected])
            expected_param = len(params)

            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET {", ".join(set_clauses)}
                WHERE campaign_id = ${id_param}
                  AND status = ANY(${expected_param}::text[])
                RETURNING *
            '''

            async with self.db:
                result = await self.db.query_row(query, params=params)

            if not result:
                logger.debug(
                    f"Status transition to {target.value} rejected for campaign {campaign_id}"
                )
                return None
            return self._row_to_campaign(result)

        except Exception as e:
            logger.error(f"Error transitioning campaign {campaign_id} to {target}: {e}")
            raise

    async def list_campaigns_by_status(
        self, status: CampaignStatus, active_only: bool = True
    ) -> List[Campaign]:
        """List campaigns in a given status"""
        try:
            conditions = ["status = $1"]
            if active_only:
                conditions.append("is_active = TRUE")

            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE {" AND ".join(conditions)}
                ORDER BY scheduled_at ASC NULLS LAST, created_at ASC
            '''

            async with self.db:
                results = await self.db.query(query, params=[CampaignStatus(status).value])

            return [self._row_to_campaign(row) for row in results]

        except Exception as e:
            logger.error(f"Error listing {status} campaigns: {e}")
            raise

    # ====================
    # Analytics Rollup
    # ====================

    async def set_analytics(self, campaign_id: str, analytics: CampaignAnalytics) -> None:
        """Overwrite the analytics rollup"""
        try:
            values = {column: getattr(analytics, column) for column in ANALYTICS_COLUMNS}
            await self.update_campaign(campaign_id, values)
        except Exception as e:
            logger.error(f"Error setting analytics for campaign {campaign_id}: {e}")
            raise

    async def increment_analytics(self, campaign_id: str, counters: Dict[str, int]) -> None:
        """Atomically add to analytics counters"""
        try:
            set_clauses = []
            params: List[Any] = []
            for column, delta in counters.items():
                if column not in ANALYTICS_COLUMNS:
                    raise ValueError(f"Unknown analytics counter: {column}")
                params.append(int(delta))
                set_clauses.append(f"{column} = {column} + ${len(params)}")
            if not set_clauses:
                return

            params.append(datetime.now(timezone.utc))
            set_clauses.append(f"updated_at = ${len(params)}")
            params.append(campaign_id)

            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET {", ".join(set_clauses)}
                WHERE campaign_id = ${len(params)}
            '''

            async with self.db:
                await self.db.execute(query, params=params)

        except Exception as e:
            logger.error(f"Error incrementing analytics for campaign {campaign_id}: {e}")
            raise

    # ====================
    # Delivery Events
    # ====================

    async def append_event(self, event: DeliveryEvent) -> bool:
        """Append event; False when the idempotency key already exists"""
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.events_table} (
                    event_id, campaign_id, recipient_email, event_type,
                    message_id, detail, idempotency_key, occurred_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (idempotency_key) DO NOTHING
                RETURNING event_id
            '''
            params = [
                event.event_id,
                event.campaign_id,
                event.recipient_email,
                event.event_type.value,
                event.message_id,
                json_dumps(event.detail),
                event.idempotency_key,
                event.timestamp,
            ]

            async with self.db:
                result = await self.db.query_row(query, params=params)

            return result is not None

        except Exception as e:
            logger.error(f"Error appending {event.event_type} event for campaign {event.campaign_id}: {e}")
            raise

    async def claim_first_engagement(
        self, campaign_id: str, recipient_email: str, event_type: DeliveryEventType
    ) -> bool:
        """
        Insert the recipient's engagement marker for this event type.

        The primary key decides between concurrent callers: only the insert
        that lands returns a row.
        """
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.engagement_table} (
                    campaign_id, event_type, recipient_email
                ) VALUES ($1, $2, lower($3))
                ON CONFLICT (campaign_id, event_type, recipient_email) DO NOTHING
                RETURNING campaign_id
            '''

            async with self.db:
                result = await self.db.query_row(
                    query, params=[campaign_id, DeliveryEventType(event_type).value, recipient_email]
                )

            return result is not None

        except Exception as e:
            logger.error(f"Error marking {event_type} engagement for campaign {campaign_id}: {e}")
            raise

    async def list_events(
        self,
        campaign_id: str,
        event_type: Optional[DeliveryEventType] = None,
        limit: int = 50,
    ) -> List[DeliveryEvent]:
        """List events, newest first"""
        try:
            conditions = ["campaign_id = $1"]
            params: List[Any] = [campaign_id]
            if event_type:
                params.append(DeliveryEventType(event_type).value)
                conditions.append(f"event_type = ${len(params)}")
            params.append(limit)

            query = f'''
                SELECT * FROM {self.schema}.{self.events_table}
                WHERE {" AND ".join(conditions)}
                ORDER BY occurred_at DESC
                LIMIT ${len(params)}
            '''

            async with self.db:
                results = await self.db.query(query, params=params)

            return [self._row_to_event(row) for row in results]

        except Exception as e:
            logger.error(f"Error listing events for campaign {campaign_id}: {e}")
            raise

    async def aggregate_events(self, campaign_id: str) -> Dict[str, Dict[str, int]]:
        """Per event type totals and distinct recipients"""
        try:
            query = f'''
                SELECT event_type,
                       COUNT(*) AS total,
                       COUNT(DISTINCT lower(recipient_email)) AS unique_recipients
                FROM {self.schema}.{self.events_table}
                WHERE campaign_id = $1
                GROUP BY event_type
            '''

            async with self.db:
                results = await self.db.query(query, params=[campaign_id])

            return {
                row["event_type"]: {
                    "total": int(row["total"]),
                    "unique": int(row["unique_recipients"]),
                }
                for row in results
            }

        except Exception as e:
            logger.error(f"Error aggregating events for campaign {campaign_id}: {e}")
            raise

    # ====================
    # Helpers
    # ====================

    def _build_set_clauses(self, updates: Dict[str, Any]):
        set_clauses = []
        params: List[Any] = []

        for key, value in updates.items():
            if key == "analytics":
                for column in ANALYTICS_COLUMNS:
                    params.append(getattr(value, column))
                    set_clauses.append(f"{column} = ${len(params)}")
                continue
            if key not in UPDATABLE_COLUMNS:
                raise ValueError(f"Unknown campaign column: {key}")

            if key in JSON_COLUMNS:
                params.append(json_dumps(value))
            elif isinstance(value, Enum):
                params.append(value.value)
            else:
                params.append(value)
            set_clauses.append(f"{key} = ${len(params)}")

        params.append(datetime.now(timezone.utc))
        set_clauses.append(f"updated_at = ${len(params)}")
        return set_clauses, params

    def _row_to_campaign(self, row: Dict[str, Any]) -> Campaign:
        """Convert database row to Campaign model"""
        return Campaign.model_validate({
            "campaign_id": row.get("campaign_id"),
            "name": row.get("name"),
            "subject": row.get("subject"),
            "html_content": row.get("html_content"),
            "text_content": row.get("text_content"),
            "template_id": row.get("template_id"),
            "recipient_list": _json_field(row.get("recipient_list"), []),
            "recipient_filter": _json_field(row.get("recipient_filter"), {}),
            "status": CampaignStatus(row.get("status")),
            "scheduled_at": row.get("scheduled_at"),
            "active_job_id": row.get("active_job_id"),
            "sent_at": row.get("sent_at"),
            "failure_reason": row.get("failure_reason"),
            "settings": _json_field(row.get("settings"), {}),
            "analytics": {column: row.get(column) or 0 for column in ANALYTICS_COLUMNS},
            "is_active": row.get("is_active", True),
            "created_by": row.get("created_by") or "system",
            "last_modified_by": row.get("last_modified_by"),
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        })

    def _row_to_event(self, row: Dict[str, Any]) -> DeliveryEvent:
        """Convert database row to DeliveryEvent model"""
        return DeliveryEvent(
            event_id=row.get("event_id"),
            campaign_id=row.get("campaign_id"),
            recipient_email=row.get("recipient_email"),
            event_type=DeliveryEventType(row.get("event_type")),
            message_id=row.get("message_id"),
            detail=_json_field(row.get("detail"), {}),
            idempotency_key=row.get("idempotency_key"),
            timestamp=row.get("occurred_at"),
        )


__all__ = ["CampaignRepository", "json_dumps"]
