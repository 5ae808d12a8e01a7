"""
Campaign Scheduler

Owns every armed fire time. Each trigger is a one-shot APScheduler date job;
removing the job disarms it. Triggers live in process memory and are rebuilt
from the campaign store on startup.

Only one scheduler may run against a given store at a time.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
from uuid import uuid4

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from .models import (
    Campaign,
    CampaignAction,
    CampaignStatus,
    MissedFirePolicy,
    RecoveryReport,
    ScheduledJobInfo,
)
from .protocols import (
    CampaignDispatcherProtocol,
    CampaignStoreProtocol,
    InvalidScheduleError,
)
from .state_machine import CampaignStateMachine

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "dispatch interrupted by restart"
MISSED_FIRE_REASON = "scheduled time passed while the service was down"


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_fire_time(value: Union[str, datetime]) -> datetime:
    """
    Parse a fire time given as a datetime or ISO-8601 string.

    Raises:
        InvalidScheduleError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidScheduleError(f"Invalid schedule time: {value!r}", value)

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidScheduleError(f"Invalid schedule time: {value!r}", value)
    return ensure_utc(parsed)


def make_job_id(campaign_id: str) -> str:
    return f"campaign_{campaign_id}_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


class CampaignScheduler:
    """Arms, disarms and recovers campaign triggers"""

    def __init__(
        self,
        store: CampaignStoreProtocol,
        dispatcher: CampaignDispatcherProtocol,
        missed_fire_policy: MissedFirePolicy = MissedFirePolicy.FIRE,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.missed_fire_policy = missed_fire_policy

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_MISSED | EVENT_JOB_ERROR)

        # A job that APScheduler already handed to its executor fires only
        # while it is still the campaign's entry here
        self._jobs: Dict[str, str] = {}  # campaign_id -> job_id
        self._job_index: Dict[str, str] = {}  # job_id -> campaign_id
        self._lock = asyncio.Lock()
        self._closed = False

    # ====================
    # Lifecycle
    # ====================

    def start(self) -> None:
        """Start the trigger loop on the running event loop"""
        if self._closed:
            raise InvalidScheduleError("Scheduler is shut down")
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Campaign trigger scheduler started")

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def shutdown(self) -> None:
        """Disarm every trigger and refuse further scheduling"""
        self._closed = True
        async with self._lock:
            disarmed = len(self._jobs)
            self._jobs.clear()
            self._job_index.clear()
            if self._scheduler.running:
                self._scheduler.remove_all_jobs()
                self._scheduler.shutdown(wait=False)

        logger.info(f"Scheduler shut down, {disarmed} triggers disarmed")

    # ====================
    # Arm / Disarm
    # ====================

    async def schedule_campaign(
        self, campaign_id: str, fire_at: Union[str, datetime]
    ) -> str:
        """
        Arm a one-shot trigger for a campaign, replacing any armed trigger.

        Returns:
            Opaque job id

        Raises:
            InvalidScheduleError: fire_at is malformed or not in the future
        """
        if self._closed:
            raise InvalidScheduleError("Scheduler is shut down", fire_at)

        fire_time = parse_fire_time(fire_at)
        if fire_time <= datetime.now(timezone.utc):
            raise InvalidScheduleError(
                f"Schedule time must be in the future: {fire_time.isoformat()}",
                fire_at,
            )

        async with self._lock:
            self.start()
            replaced = self._detach(campaign_id)
            job_id = make_job_id(campaign_id)
            self._scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=fire_time, timezone="UTC"),
                id=job_id,
                args=[campaign_id, job_id],
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=None,
            )
            self._jobs[campaign_id] = job_id
            self._job_index[job_id] = campaign_id

        if replaced:
            logger.info(f"Replaced trigger {replaced} for campaign {campaign_id}")

        logger.info(f"Campaign trigger armed: {campaign_id} at {fire_time.isoformat()} ({job_id})")
        return job_id

    async def cancel_scheduled_campaign(self, job_id: str) -> bool:
        """Disarm a trigger by job id. False if it already fired or is unknown."""
        async with self._lock:
            campaign_id = self._job_index.get(job_id)
            if not campaign_id:
                logger.debug(f"No pending trigger for job {job_id}")
                return False
            self._detach(campaign_id)

        logger.info(f"Campaign trigger cancelled: {campaign_id} ({job_id})")
        return True

    async def cancel_campaign_job(self, campaign_id: str) -> bool:
        """Disarm whatever trigger is armed for a campaign"""
        async with self._lock:
            job_id = self._detach(campaign_id)

        if not job_id:
            return False

        logger.info(f"Campaign trigger cancelled: {campaign_id} ({job_id})")
        return True

    def has_job(self, campaign_id: str) -> bool:
        return campaign_id in self._jobs

    def get_job(self, job_id: str) -> Optional[ScheduledJobInfo]:
        if job_id not in self._job_index:
            return None
        job = self._scheduler.get_job(job_id)
        return self._job_info(job) if job else None

    def get_scheduled_jobs(self) -> List[ScheduledJobInfo]:
        """Armed triggers, soonest first"""
        jobs = [
            self._job_info(job)
            for job in self._scheduler.get_jobs()
            if job.id in self._job_index
        ]
        return sorted(jobs, key=lambda j: j.fire_at)

    @staticmethod
    def _job_info(job) -> ScheduledJobInfo:
        return ScheduledJobInfo(
            job_id=job.id,
            campaign_id=job.args[0],
            fire_at=ensure_utc(job.trigger.run_date),
        )

    def _detach(self, campaign_id: str) -> Optional[str]:
        """Forget a campaign's trigger and remove its job. Caller holds the lock."""
        job_id = self._jobs.pop(campaign_id, None)
        if not job_id:
            return None
        self._job_index.pop(job_id, None)
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug(f"Trigger {job_id} already left the job store")
        return job_id

    async def _fire(self, campaign_id: str, job_id: str) -> None:
        async with self._lock:
            if self._jobs.get(campaign_id) != job_id:
                return
            self._jobs.pop(campaign_id, None)
            self._job_index.pop(job_id, None)

        logger.info(f"Campaign trigger fired: {campaign_id} ({job_id})")
        self.dispatcher.run_in_background(campaign_id)

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_MISSED:
            logger.warning(f"Campaign trigger missed its run time: {event.job_id}")
        elif event.code == EVENT_JOB_ERROR:
            logger.error(f"Campaign trigger {event.job_id} raised: {event.exception}")

    # ====================
    # Startup Recovery
    # ====================

    async def recover_on_startup(self) -> RecoveryReport:
        """
        Rebuild triggers from the store.

        Future fire times are re-armed and the new job id persisted. Overdue
        campaigns follow the missed-fire policy. Campaigns left in sending by
        a previous process are marked failed so they can be resent. Safe to
        call more than once: campaigns that already have an armed trigger or
        an in-flight run are skipped.
        """
        report = RecoveryReport()
        now = datetime.now(timezone.utc)

        scheduled = await self.store.list_campaigns_by_status(CampaignStatus.SCHEDULED, active_only=True)
        for campaign in scheduled:
            campaign_id = campaign.campaign_id
            if self.has_job(campaign_id) or self.dispatcher.is_running(campaign_id):
                report.skipped.append(campaign_id)
                continue

            if not campaign.scheduled_at:
                await self._mark_failed(campaign, "scheduled campaign has no scheduled time")
                report.failed.append(campaign_id)
                continue

            fire_at = ensure_utc(campaign.scheduled_at)
            if fire_at > now:
                try:
                    job_id = await self.schedule_campaign(campaign_id, fire_at)
                    await self.store.update_campaign(campaign_id, {"active_job_id": job_id})
                    report.rearmed.append(campaign_id)
                except Exception as e:
                    logger.error(f"Failed to re-arm campaign {campaign_id}: {e}")
                    await self.cancel_campaign_job(campaign_id)
                    await self._mark_failed(campaign, f"could not re-arm trigger: {e}")
                    report.failed.append(campaign_id)
            elif self.missed_fire_policy == MissedFirePolicy.FIRE:
                logger.info(f"Campaign {campaign_id} was due at {fire_at.isoformat()}, dispatching now")
                self.dispatcher.run_in_background(campaign_id)
                report.fired.append(campaign_id)
            else:
                await self._mark_failed(campaign, MISSED_FIRE_REASON)
                report.failed.append(campaign_id)

        stale = await self.store.list_campaigns_by_status(CampaignStatus.SENDING, active_only=False)
        for campaign in stale:
            if self.dispatcher.is_running(campaign.campaign_id):
                continue
            updated = await self.store.transition_status(
                campaign.campaign_id,
                expected=[CampaignStatus.SENDING],
                target=CampaignStatus.FAILED,
                failure_reason=INTERRUPTED_REASON,
            )
            if updated:
                logger.warning(f"Campaign {campaign.campaign_id} was interrupted mid-send, marked failed")
                report.failed.append(campaign.campaign_id)

        logger.info(
            f"Scheduler recovery: {len(report.rearmed)} re-armed, {len(report.fired)} fired, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped"
        )
        return report

    async def _mark_failed(self, campaign: Campaign, reason: str) -> None:
        try:
            updated = await self.store.transition_status(
                campaign.campaign_id,
                expected=[CampaignStatus.SCHEDULED],
                target=CampaignStateMachine.target_for(CampaignAction.FAIL),
                failure_reason=reason,
                active_job_id=None,
            )
            if updated:
                logger.warning(f"Campaign {campaign.campaign_id} marked failed: {reason}")
        except Exception as e:
            logger.error(f"Failed to mark campaign {campaign.campaign_id} as failed: {e}")


__all__ = [
    "CampaignScheduler",
    "parse_fire_time",
    "ensure_utc",
    "make_job_id",
]
