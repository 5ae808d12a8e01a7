"""
Email Campaign Service Business Logic

Admin-facing campaign operations: create, edit, schedule, send now, cancel,
plus tracking ingestion and analytics. Status changes go through the store's
compare-and-set so a trigger firing concurrently can never be overwritten.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .dispatcher import CampaignDispatcher
from .event_recorder import EventRecorder
from .models import (
    Campaign,
    CampaignAction,
    CampaignAnalytics,
    CampaignAnalyticsResponse,
    CampaignCreateRequest,
    CampaignSettings,
    CampaignStatus,
    CampaignUpdateRequest,
    DeliveryEvent,
    DeliveryEventType,
    DeliveryWebhookEvent,
    RecipientFilter,
    RecipientFilterKind,
    ScheduledJobInfo,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignStoreProtocol,
    CampaignValidationError,
    InvalidCampaignStateError,
    NotificationSinkProtocol,
)
from .scheduler import CampaignScheduler, ensure_utc, parse_fire_time
from .state_machine import CampaignStateMachine

logger = logging.getLogger(__name__)


class EmailCampaignService:
    """Email campaign service business logic layer"""

    def __init__(
        self,
        store: CampaignStoreProtocol,
        scheduler: CampaignScheduler,
        dispatcher: CampaignDispatcher,
        recorder: EventRecorder,
        notifier: Optional[NotificationSinkProtocol] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.notifier = notifier

    # ====================
    # Campaign CRUD
    # ====================

    async def create_campaign(
        self,
        request: CampaignCreateRequest,
        created_by: str = "system",
    ) -> Campaign:
        """
        Create a campaign in draft status.

        A future scheduled_at arms a trigger right away and the campaign is
        returned in scheduled status.
        """
        self._validate_recipients(request.recipient_list, request.recipient_filter)

        campaign = Campaign(
            name=request.name,
            subject=request.subject,
            html_content=request.html_content,
            text_content=request.text_content,
            template_id=request.template_id,
            recipient_list=request.recipient_list,
            recipient_filter=request.recipient_filter or RecipientFilter(),
            settings=request.settings or CampaignSettings(),
            scheduled_at=ensure_utc(request.scheduled_at) if request.scheduled_at else None,
            created_by=created_by,
            last_modified_by=created_by,
        )
        campaign = await self.store.save_campaign(campaign)
        logger.info(f"Campaign created: {campaign.campaign_id} ({campaign.name})")

        if campaign.scheduled_at and campaign.scheduled_at > datetime.now(timezone.utc):
            await self.schedule_campaign(campaign.campaign_id, campaign.scheduled_at, created_by)
            campaign = await self.get_campaign(campaign.campaign_id)

        await self._notify("campaign_created", {
            "campaign_id": campaign.campaign_id,
            "campaign_name": campaign.name,
            "status": campaign.status.value,
            "scheduled_at": campaign.scheduled_at.isoformat() if campaign.scheduled_at else None,
        })
        return campaign

    async def get_campaign(self, campaign_id: str) -> Campaign:
        """Get campaign by ID"""
        campaign = await self.store.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def update_campaign(
        self,
        campaign_id: str,
        request: CampaignUpdateRequest,
        updated_by: str = "system",
    ) -> Campaign:
        """
        Update campaign content, audience or schedule.

        Only draft and scheduled campaigns can be edited. A new future
        scheduled_at re-arms the trigger; a past or cleared one disarms it and
        returns the campaign to draft.
        """
        campaign = await self.get_campaign(campaign_id)
        CampaignStateMachine.ensure_editable(campaign)

        changes = request.model_dump(exclude_unset=True, exclude={"scheduled_at"})
        updates: Dict[str, Any] = {
            key: getattr(request, key) for key in changes
        }
        if "recipient_list" in updates or "recipient_filter" in updates:
            self._validate_recipients(
                updates.get("recipient_list", campaign.recipient_list),
                updates.get("recipient_filter", campaign.recipient_filter),
            )
        updates = {
            k: v for k, v in updates.items()
            if v is not None or k in ("text_content", "template_id")
        }
        updates["last_modified_by"] = updated_by

        target = campaign.status
        job_id: Optional[str] = None
        if "scheduled_at" in request.model_fields_set:
            new_time = ensure_utc(request.scheduled_at) if request.scheduled_at else None
            updates["scheduled_at"] = new_time
            if new_time and new_time > datetime.now(timezone.utc):
                target = CampaignStateMachine.check(campaign.status, CampaignAction.SCHEDULE)
                job_id = await self.scheduler.schedule_campaign(campaign_id, new_time)
                updates["active_job_id"] = job_id
            else:
                await self.scheduler.cancel_campaign_job(campaign_id)
                updates["active_job_id"] = None
                if campaign.status == CampaignStatus.SCHEDULED:
                    target = CampaignStateMachine.check(campaign.status, CampaignAction.UNSCHEDULE)

        try:
            updated = await self.store.transition_status(
                campaign_id,
                expected=[campaign.status],
                target=target,
                **updates,
            )
        except Exception:
            if job_id:
                await self.scheduler.cancel_scheduled_campaign(job_id)
            raise

        if not updated:
            if job_id:
                await self.scheduler.cancel_scheduled_campaign(job_id)
            current = await self.get_campaign(campaign_id)
            raise InvalidCampaignStateError(
                f"Campaign {campaign_id} changed status during update",
                current.status,
            )

        logger.info(f"Campaign updated: {campaign_id} ({updated.status.value})")
        return updated

    async def delete_campaign(self, campaign_id: str, deleted_by: str = "system") -> bool:
        """Soft delete: cancels the campaign and hides it"""
        await self.cancel_campaign(campaign_id, deleted_by)
        return True

    # ====================
    # Scheduling
    # ====================

    async def schedule_campaign(
        self,
        campaign_id: str,
        scheduled_at: Union[str, datetime],
        scheduled_by: str = "system",
    ) -> str:
        """
        Schedule a campaign to send at a future time.

        Returns:
            Job id of the armed trigger

        Raises:
            CampaignNotFoundError: Campaign does not exist
            InvalidCampaignStateError: Campaign is not draft or scheduled
            InvalidScheduleError: Time is malformed or not in the future
        """
        campaign = await self.get_campaign(campaign_id)
        if not campaign.is_active:
            raise InvalidCampaignStateError("Cannot schedule a deleted campaign", campaign.status)
        CampaignStateMachine.check(campaign.status, CampaignAction.SCHEDULE)

        fire_at = parse_fire_time(scheduled_at)
        job_id = await self.scheduler.schedule_campaign(campaign_id, fire_at)

        try:
            updated = await self.store.transition_status(
                campaign_id,
                expected=[campaign.status],
                target=CampaignStatus.SCHEDULED,
                scheduled_at=fire_at,
                active_job_id=job_id,
                last_modified_by=scheduled_by,
            )
        except Exception:
            await self.scheduler.cancel_scheduled_campaign(job_id)
            raise

        if not updated:
            await self.scheduler.cancel_scheduled_campaign(job_id)
            current = await self.get_campaign(campaign_id)
            raise InvalidCampaignStateError(
                f"Campaign {campaign_id} changed status while scheduling",
                current.status,
            )

        logger.info(f"Campaign scheduled: {campaign_id} at {fire_at.isoformat()}")
        return job_id

    async def cancel_scheduled_campaign(self, job_id: str) -> bool:
        """
        Disarm a pending trigger.

        The campaign returns to draft so a restart does not re-arm it.
        Returns False if the trigger already fired or is unknown.
        """
        job = self.scheduler.get_job(job_id)
        cancelled = await self.scheduler.cancel_scheduled_campaign(job_id)
        if not cancelled or not job:
            return cancelled

        updated = await self.store.transition_status(
            job.campaign_id,
            expected=[CampaignStatus.SCHEDULED],
            target=CampaignStateMachine.target_for(CampaignAction.UNSCHEDULE),
            active_job_id=None,
        )
        if not updated:
            logger.warning(f"Campaign {job.campaign_id} was not scheduled when job {job_id} was cancelled")
        return True

    def get_scheduled_jobs(self) -> List[ScheduledJobInfo]:
        return self.scheduler.get_scheduled_jobs()

    # ====================
    # Sending
    # ====================

    async def send_campaign_now(self, campaign_id: str) -> None:
        """
        Send a campaign immediately.

        Disarms any pending trigger, persists sending before returning, and
        runs the dispatch in the background.

        Raises:
            CampaignNotFoundError: Campaign does not exist
            InvalidCampaignStateError: Campaign is sent, sending or cancelled,
                or a concurrent send claimed it first
        """
        campaign = await self.get_campaign(campaign_id)
        if not campaign.is_active:
            raise InvalidCampaignStateError("Cannot send a deleted campaign", campaign.status)
        CampaignStateMachine.check(campaign.status, CampaignAction.START_SENDING)

        was_scheduled = campaign.status == CampaignStatus.SCHEDULED
        if was_scheduled:
            await self.scheduler.cancel_campaign_job(campaign_id)

        try:
            claimed = await self.dispatcher.claim(campaign_id)
        except (CampaignNotFoundError, InvalidCampaignStateError):
            raise
        except Exception as e:
            if was_scheduled:
                await self._rearm(campaign, e)
            raise
        self.dispatcher.execute_in_background(claimed)
        logger.info(f"Campaign send started: {campaign_id}")

    async def _rearm(self, campaign: Campaign, cause: Exception) -> None:
        """Restore the trigger of a scheduled campaign whose send could not start"""
        campaign_id = campaign.campaign_id
        if not campaign.scheduled_at or ensure_utc(campaign.scheduled_at) <= datetime.now(timezone.utc):
            logger.warning(
                f"Send failed for campaign {campaign_id} ({cause}); "
                f"scheduled time has passed, startup recovery will pick it up"
            )
            return

        try:
            job_id = await self.scheduler.schedule_campaign(campaign_id, campaign.scheduled_at)
            await self.store.update_campaign(campaign_id, {"active_job_id": job_id})
            logger.warning(f"Send failed for campaign {campaign_id} ({cause}); re-armed trigger {job_id}")
        except Exception as e:
            logger.error(f"Failed to re-arm campaign {campaign_id} after send error: {e}")

    # ====================
    # Cancellation
    # ====================

    async def cancel_campaign(self, campaign_id: str, cancelled_by: str = "system") -> Campaign:
        """
        Cancel a campaign (soft delete).

        The trigger is disarmed before the status changes. Sending and sent
        campaigns cannot be cancelled.
        """
        campaign = await self.get_campaign(campaign_id)
        CampaignStateMachine.check(campaign.status, CampaignAction.CANCEL)

        await self.scheduler.cancel_campaign_job(campaign_id)

        updated = await self.store.transition_status(
            campaign_id,
            expected=[campaign.status],
            target=CampaignStatus.CANCELLED,
            is_active=False,
            active_job_id=None,
            last_modified_by=cancelled_by,
        )
        if not updated:
            current = await self.get_campaign(campaign_id)
            raise InvalidCampaignStateError(
                f"Campaign {campaign_id} changed status during cancel",
                current.status,
            )

        logger.info(f"Campaign cancelled: {campaign_id}")
        return updated

    # ====================
    # Tracking & Analytics
    # ====================

    async def record_open(
        self,
        campaign_id: str,
        recipient_email: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[DeliveryEvent]:
        """Record an open from the tracking pixel"""
        if not await self.store.get_campaign(campaign_id):
            logger.debug(f"Open for unknown campaign {campaign_id} ignored")
            return None
        return await self.recorder.record(
            campaign_id,
            recipient_email,
            DeliveryEventType.OPENED,
            detail={"user_agent": user_agent, "ip_address": ip_address},
        )

    async def record_click(
        self,
        campaign_id: str,
        recipient_email: str,
        url: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[DeliveryEvent]:
        """Record a click from the redirect endpoint"""
        if not await self.store.get_campaign(campaign_id):
            logger.debug(f"Click for unknown campaign {campaign_id} ignored")
            return None
        return await self.recorder.record(
            campaign_id,
            recipient_email,
            DeliveryEventType.CLICKED,
            detail={"clicked_url": url, "user_agent": user_agent, "ip_address": ip_address},
        )

    async def record_delivery_event(self, event: DeliveryWebhookEvent) -> Optional[DeliveryEvent]:
        """Record a provider-reported delivery or engagement event"""
        await self.get_campaign(event.campaign_id)
        if event.event_type in (DeliveryEventType.SENT, DeliveryEventType.FAILED):
            raise CampaignValidationError(
                f"{event.event_type.value} events are recorded by the dispatcher",
                "event_type",
            )
        return await self.recorder.record(
            event.campaign_id,
            event.recipient_email,
            event.event_type,
            message_id=event.message_id,
            detail=event.detail,
        )

    async def get_campaign_analytics(self, campaign_id: str) -> CampaignAnalyticsResponse:
        """Summary counters, per-type breakdown and the 50 most recent events"""
        campaign = await self.get_campaign(campaign_id)
        return await self.recorder.get_campaign_analytics(campaign)

    async def rebuild_analytics(self, campaign_id: str) -> CampaignAnalytics:
        """Recompute the rollup counters from the event log"""
        await self.get_campaign(campaign_id)
        return await self.recorder.rebuild_rollup(campaign_id)

    # ====================
    # Validation Helpers
    # ====================

    def _validate_recipients(self, recipient_list, recipient_filter: Optional[RecipientFilter]) -> None:
        for entry in recipient_list or []:
            if "@" not in entry.email:
                raise CampaignValidationError(f"Invalid recipient email: {entry.email}", "recipient_list")
        if (
            not recipient_list
            and recipient_filter
            and recipient_filter.kind == RecipientFilterKind.CUSTOM
            and not recipient_filter.criteria
        ):
            raise CampaignValidationError("Custom recipient filter requires criteria", "recipient_filter")

    # ====================
    # Notifications
    # ====================

    async def _notify(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.notifier:
            logger.debug(f"Notifier not configured, skipping {event}")
            return
        try:
            await self.notifier.notify(event, payload)
        except Exception as e:
            logger.error(f"Failed to send {event} notification: {e}")


__all__ = ["EmailCampaignService"]
