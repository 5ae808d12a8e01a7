"""
Campaign Status State Machine

Legal status transitions and the actions that drive them.

Valid Transitions:
- DRAFT -> SCHEDULED (schedule with a future fire time)
- DRAFT -> SENDING (send now)
- DRAFT -> CANCELLED (cancel)
- SCHEDULED -> SENDING (trigger fires, or send now)
- SCHEDULED -> DRAFT (unschedule to edit)
- SCHEDULED -> CANCELLED (cancel before firing)
- SCHEDULED -> FAILED (trigger could not be re-armed on startup)
- SENDING -> SENT (run finished)
- SENDING -> FAILED (no recipients, or the run could not start)
- FAILED -> SENDING (manual resend)
- FAILED -> CANCELLED (cancel)
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet

from .models import Campaign, CampaignAction, CampaignStatus
from .protocols import InvalidCampaignStateError


VALID_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({
        CampaignStatus.SCHEDULED,
        CampaignStatus.SENDING,
        CampaignStatus.CANCELLED,
    }),
    CampaignStatus.SCHEDULED: frozenset({
        CampaignStatus.SENDING,
        CampaignStatus.DRAFT,
        CampaignStatus.CANCELLED,
        CampaignStatus.FAILED,
    }),
    CampaignStatus.SENDING: frozenset({
        CampaignStatus.SENT,
        CampaignStatus.FAILED,
    }),
    CampaignStatus.FAILED: frozenset({
        CampaignStatus.SENDING,
        CampaignStatus.CANCELLED,
    }),
    CampaignStatus.SENT: frozenset(),  # Terminal state
    CampaignStatus.CANCELLED: frozenset(),  # Terminal state
}

# action -> (allowed source statuses, target status)
ACTIONS = {
    CampaignAction.SCHEDULE: (
        frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED}),
        CampaignStatus.SCHEDULED,
    ),
    CampaignAction.UNSCHEDULE: (
        frozenset({CampaignStatus.SCHEDULED}),
        CampaignStatus.DRAFT,
    ),
    CampaignAction.START_SENDING: (
        frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED, CampaignStatus.FAILED}),
        CampaignStatus.SENDING,
    ),
    CampaignAction.COMPLETE: (
        frozenset({CampaignStatus.SENDING}),
        CampaignStatus.SENT,
    ),
    CampaignAction.FAIL: (
        frozenset({CampaignStatus.SENDING, CampaignStatus.SCHEDULED}),
        CampaignStatus.FAILED,
    ),
    CampaignAction.CANCEL: (
        frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED, CampaignStatus.FAILED}),
        CampaignStatus.CANCELLED,
    ),
}

TERMINAL_STATES = frozenset({CampaignStatus.SENT, CampaignStatus.CANCELLED})
EDITABLE_STATES = frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED})


class CampaignStateMachine:
    """Campaign status transitions"""

    @staticmethod
    def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
        """Check if a status transition is valid"""
        if current == target == CampaignStatus.SCHEDULED:
            return True  # Reschedule
        return target in VALID_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def is_terminal(status: CampaignStatus) -> bool:
        return status in TERMINAL_STATES

    @staticmethod
    def sources_for(action: CampaignAction) -> FrozenSet[CampaignStatus]:
        """Statuses from which an action may be applied"""
        return ACTIONS[action][0]

    @staticmethod
    def target_for(action: CampaignAction) -> CampaignStatus:
        return ACTIONS[action][1]

    @classmethod
    def check(cls, status: CampaignStatus, action: CampaignAction) -> CampaignStatus:
        """
        Validate that action may be applied in status.

        Returns:
            The target status

        Raises:
            InvalidCampaignStateError: If the action is not allowed
        """
        sources, target = ACTIONS[action]
        if status not in sources or not cls.can_transition(status, target):
            raise InvalidCampaignStateError(
                f"Cannot {action.value} campaign in {status.value} status",
                status,
            )
        return target

    @classmethod
    def transition(cls, campaign: Campaign, action: CampaignAction) -> Campaign:
        """Return a copy of campaign moved through action"""
        target = cls.check(campaign.status, action)
        return campaign.model_copy(
            update={"status": target, "updated_at": datetime.now(timezone.utc)}
        )

    @staticmethod
    def ensure_editable(campaign: Campaign) -> None:
        """Content and recipients may only change in draft or scheduled"""
        if campaign.status not in EDITABLE_STATES:
            raise InvalidCampaignStateError(
                f"Cannot modify campaign in {campaign.status.value} status",
                campaign.status,
            )


__all__ = [
    "VALID_TRANSITIONS",
    "ACTIONS",
    "TERMINAL_STATES",
    "EDITABLE_STATES",
    "CampaignStateMachine",
]
