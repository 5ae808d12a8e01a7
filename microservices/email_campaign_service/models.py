"""
Email Campaign Service Data Models

Campaign definitions, delivery events, dispatch outcomes and the
request/response contracts exposed by the HTTP host.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field, field_validator


DEFAULT_RECIPIENT_NAME = "Valued Customer"


# ====================
# Enums
# ====================


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CampaignAction(str, Enum):
    """Actions that drive the campaign state machine"""
    SCHEDULE = "schedule"
    UNSCHEDULE = "unschedule"
    START_SENDING = "start_sending"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"


class RecipientFilterKind(str, Enum):
    """Directory filter used when no explicit recipient list is given"""
    ALL = "all"
    CUSTOMERS = "customers"
    CUSTOM = "custom"


class DeliveryEventType(str, Enum):
    """Per-recipient delivery and engagement events"""
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"


class MissedFirePolicy(str, Enum):
    """What recovery does with a scheduled campaign whose fire time has passed"""
    FIRE = "fire"
    FAIL = "fail"


# ====================
# Base
# ====================


class BaseContract(BaseModel):
    """Base model for all email campaign contracts"""

    model_config = {
        "from_attributes": True,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ====================
# Campaign Models
# ====================


class ExplicitRecipient(BaseContract):
    """Author-supplied recipient entry"""
    email: str = Field(..., min_length=3, max_length=320)
    name: Optional[str] = Field(None, max_length=255)
    variables: Dict[str, str] = Field(default_factory=dict, description="Per-recipient merge variables")


class RecipientFilter(BaseContract):
    """Directory query used to build the audience"""
    kind: RecipientFilterKind = Field(default=RecipientFilterKind.ALL)
    criteria: Dict[str, Any] = Field(default_factory=dict)


class CampaignSettings(BaseContract):
    """Delivery settings"""
    track_opens: bool = True
    track_clicks: bool = True
    from_name: Optional[str] = Field(None, max_length=100)
    reply_to: Optional[str] = Field(None, max_length=320)


class CampaignAnalytics(BaseContract):
    """Rollup counters maintained by the dispatcher and the event recorder"""
    total_sent: int = Field(default=0, ge=0)
    total_delivered: int = Field(default=0, ge=0)
    total_opened: int = Field(default=0, ge=0)
    total_clicked: int = Field(default=0, ge=0)
    total_bounced: int = Field(default=0, ge=0)
    unique_opens: int = Field(default=0, ge=0)
    unique_clicks: int = Field(default=0, ge=0)

    def _rate(self, count: int) -> float:
        if self.total_sent <= 0:
            return 0.0
        return round(count / self.total_sent * 100, 2)

    @computed_field
    @property
    def open_rate(self) -> float:
        return self._rate(self.unique_opens)

    @computed_field
    @property
    def click_rate(self) -> float:
        return self._rate(self.unique_clicks)

    @computed_field
    @property
    def bounce_rate(self) -> float:
        return self._rate(self.total_bounced)


class Campaign(BaseContract):
    """Email campaign definition and lifecycle state"""
    campaign_id: str = Field(default_factory=lambda: f"ecmp_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=1, max_length=100)

    # Content
    subject: str = Field(..., min_length=1, max_length=200)
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = None
    template_id: Optional[str] = None

    # Audience
    recipient_list: List[ExplicitRecipient] = Field(default_factory=list)
    recipient_filter: RecipientFilter = Field(default_factory=RecipientFilter)

    # Lifecycle
    status: CampaignStatus = Field(default=CampaignStatus.DRAFT)
    scheduled_at: Optional[datetime] = None
    active_job_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    settings: CampaignSettings = Field(default_factory=CampaignSettings)
    analytics: CampaignAnalytics = Field(default_factory=CampaignAnalytics)

    # Audit
    is_active: bool = True
    created_by: str = "system"
    last_modified_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Recipient(BaseContract):
    """Resolved recipient with its merge variables"""
    email: str
    name: str = DEFAULT_RECIPIENT_NAME
    variables: Dict[str, str] = Field(default_factory=dict)


class DeliveryEvent(BaseContract):
    """Append-only per-recipient delivery record"""
    event_id: str = Field(default_factory=lambda: f"evt_{uuid4().hex[:16]}")
    campaign_id: str
    recipient_email: str
    event_type: DeliveryEventType
    message_id: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class DispatchResult(BaseContract):
    """Outcome of a single dispatch run"""
    campaign_id: str
    status: CampaignStatus
    sent: int = 0
    failed: int = 0
    total: int = 0
    failure_reason: Optional[str] = None


class ScheduledJobInfo(BaseContract):
    """Armed trigger as reported by the scheduler"""
    job_id: str
    campaign_id: str
    fire_at: datetime


class RecoveryReport(BaseContract):
    """What recover_on_startup did with each stored campaign"""
    rearmed: List[str] = Field(default_factory=list)
    fired: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


class EventTypeStats(BaseContract):
    """Total and unique-recipient count for one event type"""
    total: int = 0
    unique: int = 0


class CampaignAnalyticsResponse(BaseContract):
    """Campaign summary with event breakdown and recent activity"""
    campaign_id: str
    name: str
    status: CampaignStatus
    sent_at: Optional[datetime] = None
    analytics: CampaignAnalytics
    event_analytics: Dict[str, EventTypeStats] = Field(default_factory=dict)
    recent_events: List[DeliveryEvent] = Field(default_factory=list)


# ====================
# Request Models
# ====================


class CampaignCreateRequest(BaseContract):
    """Create campaign request"""
    name: str = Field(..., min_length=1, max_length=100)
    subject: str = Field(..., min_length=1, max_length=200)
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = None
    template_id: Optional[str] = None
    recipient_list: List[ExplicitRecipient] = Field(default_factory=list)
    recipient_filter: Optional[RecipientFilter] = None
    scheduled_at: Optional[datetime] = None
    settings: Optional[CampaignSettings] = None

    @field_validator("name", "subject")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CampaignUpdateRequest(BaseContract):
    """Update campaign request; unset fields are left unchanged"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    subject: Optional[str] = Field(None, min_length=1, max_length=200)
    html_content: Optional[str] = Field(None, min_length=1)
    text_content: Optional[str] = None
    template_id: Optional[str] = None
    recipient_list: Optional[List[ExplicitRecipient]] = None
    recipient_filter: Optional[RecipientFilter] = None
    scheduled_at: Optional[datetime] = None
    settings: Optional[CampaignSettings] = None


class ScheduleRequest(BaseContract):
    """Schedule request; fire time as ISO-8601"""
    scheduled_at: str = Field(..., description="ISO-8601 fire time, naive values are UTC")


class DeliveryWebhookEvent(BaseContract):
    """Delivery/engagement event reported by the mail provider"""
    campaign_id: str
    recipient_email: str
    event_type: DeliveryEventType
    message_id: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


# ====================
# Response Models
# ====================


class CampaignResponse(BaseContract):
    """Single campaign response"""
    campaign: Campaign
    message: Optional[str] = None


class ScheduleResponse(BaseContract):
    """Schedule response"""
    campaign_id: str
    job_id: str
    scheduled_at: datetime


class CancelJobResponse(BaseContract):
    """Cancel job response"""
    job_id: str
    cancelled: bool


class SendResponse(BaseContract):
    """Send-now response"""
    campaign_id: str
    status: CampaignStatus
    message: str


class ScheduledJobListResponse(BaseContract):
    """Armed triggers"""
    jobs: List[ScheduledJobInfo]
    total: int


class HealthResponse(BaseContract):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseContract):
    """Readiness check response"""
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)
    details: Dict[str, str] = Field(default_factory=dict)


class LivenessResponse(BaseContract):
    """Liveness check response"""
    alive: bool
    uptime_seconds: float


__all__ = [
    "DEFAULT_RECIPIENT_NAME",
    # Enums
    "CampaignStatus",
    "CampaignAction",
    "RecipientFilterKind",
    "DeliveryEventType",
    "MissedFirePolicy",
    # Core models
    "BaseContract",
    "ExplicitRecipient",
    "RecipientFilter",
    "CampaignSettings",
    "CampaignAnalytics",
    "Campaign",
    "Recipient",
    "DeliveryEvent",
    "DispatchResult",
    "ScheduledJobInfo",
    "RecoveryReport",
    "EventTypeStats",
    "CampaignAnalyticsResponse",
    # Requests
    "CampaignCreateRequest",
    "CampaignUpdateRequest",
    "ScheduleRequest",
    "DeliveryWebhookEvent",
    # Responses
    "CampaignResponse",
    "ScheduleResponse",
    "CancelJobResponse",
    "SendResponse",
    "ScheduledJobListResponse",
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
]
