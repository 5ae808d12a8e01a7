"""
Email Campaign Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from .models import (
    Campaign,
    CampaignAnalytics,
    CampaignStatus,
    DeliveryEvent,
    DeliveryEventType,
)


# ====================
# Repository Protocols
# ====================


class CampaignStoreProtocol(Protocol):
    """Protocol for durable campaign storage"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Insert a new campaign"""
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        ...

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any]
    ) -> Optional[Campaign]:
        """Update campaign fields"""
        ...

    async def transition_status(
        self,
        campaign_id: str,
        expected: List[CampaignStatus],
        target: CampaignStatus,
        **fields: Any,
    ) -> Optional[Campaign]:
        """
        Atomically move a campaign to target status if its current status is in
        expected. Returns the updated campaign, or None when the guard did not match.
        """
        ...

    async def list_campaigns_by_status(
        self, status: CampaignStatus, active_only: bool = True
    ) -> List[Campaign]:
        """List campaigns in a given status"""
        ...

    async def set_analytics(self, campaign_id: str, analytics: CampaignAnalytics) -> None:
        """Overwrite the analytics rollup"""
        ...

    async def increment_analytics(self, campaign_id: str, counters: Dict[str, int]) -> None:
        """Atomically add to analytics counters"""
        ...


class DeliveryEventStoreProtocol(Protocol):
    """Protocol for the append-only delivery event log"""

    async def append_event(self, event: DeliveryEvent) -> bool:
        """Append event; False when an event with the same idempotency key exists"""
        ...

    async def claim_first_engagement(
        self, campaign_id: str, recipient_email: str, event_type: DeliveryEventType
    ) -> bool:
        """True for exactly one caller per (campaign, recipient, event type)"""
        ...

    async def list_events(
        self,
        campaign_id: str,
        event_type: Optional[DeliveryEventType] = None,
        limit: int = 50,
    ) -> List[DeliveryEvent]:
        """List events, newest first"""
        ...

    async def aggregate_events(self, campaign_id: str) -> Dict[str, Dict[str, int]]:
        """Per event type: {"total": n, "unique": distinct recipients}"""
        ...


# ====================
# External Collaborator Protocols
# ====================


class MailTransportProtocol(Protocol):
    """Protocol for the outbound mail provider"""

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        from_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send one message; returns {"message_id": ...}. May raise."""
        ...


class RecipientDirectoryProtocol(Protocol):
    """Protocol for the user/recipient directory"""

    async def find_recipients(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active accounts, optionally restricted to a role"""
        ...

    async def find_by_criteria(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Accounts matching an arbitrary criteria query"""
        ...


class NotificationSinkProtocol(Protocol):
    """Protocol for admin notifications"""

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        """Fire-and-forget admin notification"""
        ...


class CampaignDispatcherProtocol(Protocol):
    """What the scheduler needs from the dispatcher"""

    def run_in_background(self, campaign_id: str) -> Any:
        """Start a dispatch run off the caller's path"""
        ...

    def is_running(self, campaign_id: str) -> bool:
        """Whether a run for this campaign is in flight"""
        ...


# ====================
# Exceptions
# ====================


class CampaignServiceError(Exception):
    """Base exception for email campaign service errors"""
    pass


class CampaignNotFoundError(CampaignServiceError):
    """Raised when campaign is not found"""
    pass


class InvalidCampaignStateError(CampaignServiceError):
    """Raised when campaign is in invalid state for operation"""

    def __init__(self, message: str, current_status: Optional[CampaignStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class InvalidScheduleError(CampaignServiceError):
    """Raised when a fire time is malformed or not in the future"""

    def __init__(self, message: str, fire_at: Optional[Any] = None):
        super().__init__(message)
        self.fire_at = fire_at


class ResolutionEmptyError(CampaignServiceError):
    """Raised when a campaign resolves to zero recipients"""
    pass


class CampaignValidationError(CampaignServiceError):
    """Raised when campaign validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class RecipientSendError(CampaignServiceError):
    """Raised when a single recipient send fails"""

    def __init__(self, message: str, recipient_email: Optional[str] = None):
        super().__init__(message)
        self.recipient_email = recipient_email


class TransportUnavailableError(RecipientSendError):
    """Raised when the mail provider cannot be reached"""
    pass


__all__ = [
    "CampaignStoreProtocol",
    "DeliveryEventStoreProtocol",
    "MailTransportProtocol",
    "RecipientDirectoryProtocol",
    "NotificationSinkProtocol",
    "CampaignDispatcherProtocol",
    "CampaignServiceError",
    "CampaignNotFoundError",
    "InvalidCampaignStateError",
    "InvalidScheduleError",
    "ResolutionEmptyError",
    "CampaignValidationError",
    "RecipientSendError",
    "TransportUnavailableError",
]
