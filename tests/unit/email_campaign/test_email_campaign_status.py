"""
Unit Tests for Email Campaign Status State Machine

Tests valid and invalid transitions and the action checks the engine relies on.
"""

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.email_campaign_service.protocols import InvalidCampaignStateError
from microservices.email_campaign_service.state_machine import (
    EDITABLE_STATES,
    TERMINAL_STATES,
    CampaignStateMachine,
)
from tests.contracts.email_campaign.data_contract import (
    CampaignAction,
    CampaignStatus,
    EmailCampaignTestDataFactory,
)


# ====================
# Valid Transition Tests
# ====================


class TestValidEmailCampaignTransitions:
    """Tests for valid campaign status transitions"""

    @pytest.mark.parametrize("current,target", [
        (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED),
        (CampaignStatus.DRAFT, CampaignStatus.SENDING),
        (CampaignStatus.DRAFT, CampaignStatus.CANCELLED),
        (CampaignStatus.SCHEDULED, CampaignStatus.SENDING),
        (CampaignStatus.SCHEDULED, CampaignStatus.DRAFT),
        (CampaignStatus.SCHEDULED, CampaignStatus.CANCELLED),
        (CampaignStatus.SCHEDULED, CampaignStatus.FAILED),
        (CampaignStatus.SENDING, CampaignStatus.SENT),
        (CampaignStatus.SENDING, CampaignStatus.FAILED),
        (CampaignStatus.FAILED, CampaignStatus.SENDING),
        (CampaignStatus.FAILED, CampaignStatus.CANCELLED),
    ])
    def test_transition_allowed(self, current, target):
        assert CampaignStateMachine.can_transition(current, target)

    def test_reschedule_allowed(self):
        """Scheduled -> scheduled replaces the fire time"""
        assert CampaignStateMachine.can_transition(
            CampaignStatus.SCHEDULED, CampaignStatus.SCHEDULED
        )


# ====================
# Invalid Transition Tests
# ====================


class TestInvalidEmailCampaignTransitions:
    """Tests for invalid transitions - 409 Conflict scenarios"""

    @pytest.mark.parametrize("terminal", [CampaignStatus.SENT, CampaignStatus.CANCELLED])
    def test_terminal_to_any_invalid(self, terminal):
        for status in CampaignStatus:
            assert not CampaignStateMachine.can_transition(terminal, status), \
                f"{terminal} -> {status} should be invalid"

    def test_sending_cannot_go_back_to_scheduled(self):
        assert not CampaignStateMachine.can_transition(
            CampaignStatus.SENDING, CampaignStatus.SCHEDULED
        )

    def test_sending_cannot_be_cancelled(self):
        assert not CampaignStateMachine.can_transition(
            CampaignStatus.SENDING, CampaignStatus.CANCELLED
        )

    def test_terminal_states(self):
        assert TERMINAL_STATES == {CampaignStatus.SENT, CampaignStatus.CANCELLED}
        assert CampaignStateMachine.is_terminal(CampaignStatus.SENT)
        assert not CampaignStateMachine.is_terminal(CampaignStatus.FAILED)


# ====================
# Action Checks
# ====================


class TestCampaignActions:
    """Tests for action checks used by the scheduler, dispatcher and service"""

    def test_check_returns_target(self):
        target = CampaignStateMachine.check(CampaignStatus.DRAFT, CampaignAction.SCHEDULE)
        assert target == CampaignStatus.SCHEDULED

    @pytest.mark.parametrize("status", [
        CampaignStatus.DRAFT, CampaignStatus.SCHEDULED, CampaignStatus.FAILED,
    ])
    def test_start_sending_sources(self, status):
        assert CampaignStateMachine.check(status, CampaignAction.START_SENDING) == CampaignStatus.SENDING

    @pytest.mark.parametrize("status", [
        CampaignStatus.SENDING, CampaignStatus.SENT, CampaignStatus.CANCELLED,
    ])
    def test_start_sending_rejected(self, status):
        with pytest.raises(InvalidCampaignStateError) as exc_info:
            CampaignStateMachine.check(status, CampaignAction.START_SENDING)
        assert exc_info.value.current_status == status

    def test_cancel_sending_rejected_with_message(self):
        with pytest.raises(InvalidCampaignStateError, match="Cannot cancel campaign in sending status"):
            CampaignStateMachine.check(CampaignStatus.SENDING, CampaignAction.CANCEL)

    def test_schedule_from_failed_rejected(self):
        with pytest.raises(InvalidCampaignStateError):
            CampaignStateMachine.check(CampaignStatus.FAILED, CampaignAction.SCHEDULE)

    def test_transition_returns_copy(self):
        campaign = EmailCampaignTestDataFactory.make_campaign()

        moved = CampaignStateMachine.transition(campaign, CampaignAction.CANCEL)

        assert moved.status == CampaignStatus.CANCELLED
        assert campaign.status == CampaignStatus.DRAFT
        assert moved.campaign_id == campaign.campaign_id

    @pytest.mark.parametrize("status", list(CampaignStatus))
    def test_ensure_editable(self, status):
        campaign = EmailCampaignTestDataFactory.make_campaign(status=status)
        if status in EDITABLE_STATES:
            CampaignStateMachine.ensure_editable(campaign)
        else:
            with pytest.raises(InvalidCampaignStateError):
                CampaignStateMachine.ensure_editable(campaign)
