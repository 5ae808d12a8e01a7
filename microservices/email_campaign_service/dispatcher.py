"""
Campaign Dispatcher

Claims a campaign, resolves its audience once, and sends in sequential
batches with bounded concurrency inside each batch. Per-recipient failures
are recorded and counted, never propagated to siblings.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from .event_recorder import EventRecorder
from .models import (
    Campaign,
    CampaignAction,
    CampaignStatus,
    DeliveryEventType,
    DispatchResult,
    Recipient,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignStoreProtocol,
    InvalidCampaignStateError,
    MailTransportProtocol,
    NotificationSinkProtocol,
    ResolutionEmptyError,
)
from .recipient_resolver import RecipientResolver
from .state_machine import CampaignStateMachine
from .templating import (
    build_unsubscribe_url,
    inject_open_tracking,
    render_template,
    rewrite_links_for_click_tracking,
)

logger = logging.getLogger(__name__)

NO_RECIPIENTS_REASON = "no recipients"


class CampaignDispatcher:
    """Drives a single campaign send"""

    BATCH_SIZE = 50
    MAX_CONCURRENCY = 10
    BATCH_DELAY_SECONDS = 1.0

    def __init__(
        self,
        store: CampaignStoreProtocol,
        resolver: RecipientResolver,
        transport: MailTransportProtocol,
        recorder: EventRecorder,
        notifier: Optional[NotificationSinkProtocol] = None,
        api_url: str = "http://localhost:8252",
        frontend_url: str = "http://localhost:3000",
        default_from_name: Optional[str] = None,
        default_reply_to: Optional[str] = None,
        batch_size: int = BATCH_SIZE,
        max_concurrency: int = MAX_CONCURRENCY,
        batch_delay_seconds: float = BATCH_DELAY_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.store = store
        self.resolver = resolver
        self.transport = transport
        self.recorder = recorder
        self.notifier = notifier
        self.api_url = api_url
        self.frontend_url = frontend_url
        self.default_from_name = default_from_name
        self.default_reply_to = default_reply_to
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.batch_delay_seconds = batch_delay_seconds

        self._tasks: Set[asyncio.Task] = set()

    # ====================
    # Entry Points
    # ====================

    async def run(self, campaign_id: str) -> DispatchResult:
        """
        Claim and dispatch a campaign.

        Raises:
            CampaignNotFoundError: Campaign does not exist
            InvalidCampaignStateError: Campaign is terminal, already sending,
                or another caller claimed it first
        """
        campaign = await self.claim(campaign_id)
        return await self.execute(campaign)

    async def claim(self, campaign_id: str) -> Campaign:
        """
        Atomically move a campaign to sending.

        The store's compare-and-set is the dispatch mutex: of two concurrent
        callers exactly one gets the campaign back.
        """
        campaign = await self.store.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")

        CampaignStateMachine.check(campaign.status, CampaignAction.START_SENDING)

        claimed = await self.store.transition_status(
            campaign_id,
            expected=list(CampaignStateMachine.sources_for(CampaignAction.START_SENDING)),
            target=CampaignStatus.SENDING,
            active_job_id=None,
            failure_reason=None,
        )
        if not claimed:
            current = await self.store.get_campaign(campaign_id)
            current_status = current.status if current else None
            raise InvalidCampaignStateError(
                f"Campaign {campaign_id} was claimed by another dispatch run",
                current_status,
            )

        logger.info(f"Campaign claimed for sending: {campaign_id}")
        return claimed

    async def execute(self, campaign: Campaign) -> DispatchResult:
        """Send a campaign that is already in sending status"""
        campaign_id = campaign.campaign_id

        try:
            recipients = await self._resolve(campaign)
        except ResolutionEmptyError:
            logger.warning(f"Campaign {campaign_id} resolved to zero recipients")
            return await self._fail(campaign, NO_RECIPIENTS_REASON)
        except Exception as e:
            logger.error(f"Recipient resolution failed for campaign {campaign_id}: {e}")
            return await self._fail(campaign, f"recipient resolution failed: {e}")

        logger.info(
            f"Dispatching campaign {campaign_id} to {len(recipients)} recipients "
            f"in batches of {self.batch_size}"
        )

        sent = 0
        failed = 0
        semaphore = asyncio.Semaphore(self.max_concurrency)
        batches = [
            recipients[i:i + self.batch_size]
            for i in range(0, len(recipients), self.batch_size)
        ]

        for index, batch in enumerate(batches):
            results = await asyncio.gather(
                *(self._send_one(campaign, recipient, semaphore) for recipient in batch),
                return_exceptions=True,
            )
            for recipient, outcome in zip(batch, results):
                if outcome is True:
                    sent += 1
                else:
                    failed += 1
                    if isinstance(outcome, BaseException):
                        logger.error(
                            f"Unexpected error sending campaign {campaign_id} "
                            f"to {recipient.email}: {outcome}"
                        )

            logger.debug(
                f"Campaign {campaign_id} batch {index + 1}/{len(batches)} done: "
                f"{sent} sent, {failed} failed so far"
            )
            if index < len(batches) - 1 and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        return await self._complete(campaign, sent, failed, len(recipients))

    async def _resolve(self, campaign: Campaign) -> List[Recipient]:
        recipients = await self.resolver.resolve(campaign)
        if not recipients:
            raise ResolutionEmptyError(f"Campaign {campaign.campaign_id} has no recipients")
        return recipients

    # ====================
    # Background Runs
    # ====================

    def run_in_background(self, campaign_id: str) -> asyncio.Task:
        """Claim and dispatch off the caller's path"""
        return self._spawn(self._run_logged(campaign_id), self._task_name(campaign_id))

    def execute_in_background(self, campaign: Campaign) -> asyncio.Task:
        """Dispatch an already claimed campaign off the caller's path"""
        return self._spawn(
            self._execute_logged(campaign), self._task_name(campaign.campaign_id)
        )

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    def is_running(self, campaign_id: str) -> bool:
        """Whether a background run for this campaign is in flight"""
        name = self._task_name(campaign_id)
        return any(task.get_name() == name and not task.done() for task in self._tasks)

    @staticmethod
    def _task_name(campaign_id: str) -> str:
        return f"dispatch-{campaign_id}"

    async def wait_idle(self) -> None:
        """Wait for every background run started so far"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Give in-flight runs time to finish, then cancel the rest"""
        if not self._tasks:
            return
        pending = list(self._tasks)
        logger.info(f"Waiting for {len(pending)} dispatch runs to finish")
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} unfinished dispatch runs")
            await asyncio.gather(*still_running, return_exceptions=True)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_logged(self, campaign_id: str) -> Optional[DispatchResult]:
        try:
            return await self.run(campaign_id)
        except (CampaignNotFoundError, InvalidCampaignStateError) as e:
            logger.warning(f"Dispatch of campaign {campaign_id} skipped: {e}")
            return None
        except Exception as e:
            logger.error(f"Dispatch of campaign {campaign_id} crashed: {e}", exc_info=True)
            return None

    async def _execute_logged(self, campaign: Campaign) -> Optional[DispatchResult]:
        try:
            return await self.execute(campaign)
        except Exception as e:
            logger.error(f"Dispatch of campaign {campaign.campaign_id} crashed: {e}", exc_info=True)
            return None

    # ====================
    # Per Recipient
    # ====================

    async def _send_one(
        self,
        campaign: Campaign,
        recipient: Recipient,
        semaphore: asyncio.Semaphore,
    ) -> bool:
        async with semaphore:
            try:
                message = self.render_message(campaign, recipient)
                response = await self.transport.send_email(
                    to=recipient.email,
                    subject=message["subject"],
                    html=message["html"],
                    from_name=campaign.settings.from_name or self.default_from_name,
                    reply_to=campaign.settings.reply_to or self.default_reply_to,
                    text=message["text"],
                )
            except Exception as e:
                logger.warning(
                    f"Send failed for {recipient.email} in campaign {campaign.campaign_id}: {e}"
                )
                await self.recorder.record(
                    campaign.campaign_id,
                    recipient.email,
                    DeliveryEventType.FAILED,
                    detail={"error": str(e), "error_type": type(e).__name__},
                )
                return False

            message_id = (response or {}).get("message_id")
            await self.recorder.record(
                campaign.campaign_id,
                recipient.email,
                DeliveryEventType.SENT,
                message_id=message_id,
            )
            return True

    def render_message(self, campaign: Campaign, recipient: Recipient) -> Dict[str, Any]:
        """Merge recipient variables and add tracking instrumentation"""
        variables = recipient.variables
        subject = render_template(campaign.subject, variables)
        html = render_template(campaign.html_content, variables)
        text = render_template(campaign.text_content, variables)

        if campaign.settings.track_clicks:
            html = rewrite_links_for_click_tracking(
                html,
                self.api_url,
                campaign.campaign_id,
                recipient.email,
                skip_prefixes=(build_unsubscribe_url(self.frontend_url, ""),),
            )
        if campaign.settings.track_opens:
            html = inject_open_tracking(html, self.api_url, campaign.campaign_id, recipient.email)

        return {"subject": subject, "html": html, "text": text}

    # ====================
    # Completion
    # ====================

    async def _complete(
        self, campaign: Campaign, sent: int, failed: int, total: int
    ) -> DispatchResult:
        campaign_id = campaign.campaign_id

        # Engagement counters may have moved during the run; only total_sent is ours
        updated = await self.store.transition_status(
            campaign_id,
            expected=[CampaignStatus.SENDING],
            target=CampaignStatus.SENT,
            sent_at=datetime.now(timezone.utc),
            total_sent=sent,
        )
        if not updated:
            logger.error(f"Campaign {campaign_id} left sending status during dispatch")

        logger.info(f"Campaign sent: {campaign_id} ({sent} sent, {failed} failed)")

        await self._notify("campaign_sent", {
            "campaign_id": campaign_id,
            "campaign_name": campaign.name,
            "total_sent": sent,
            "failures": failed,
        })

        return DispatchResult(
            campaign_id=campaign_id,
            status=CampaignStatus.SENT,
            sent=sent,
            failed=failed,
            total=total,
        )

    async def _fail(self, campaign: Campaign, reason: str) -> DispatchResult:
        campaign_id = campaign.campaign_id
        updated = await self.store.transition_status(
            campaign_id,
            expected=list(CampaignStateMachine.sources_for(CampaignAction.FAIL)),
            target=CampaignStatus.FAILED,
            failure_reason=reason,
        )
        if not updated:
            logger.error(f"Could not mark campaign {campaign_id} as failed")

        await self._notify("campaign_failed", {
            "campaign_id": campaign_id,
            "campaign_name": campaign.name,
            "reason": reason,
        })

        return DispatchResult(
            campaign_id=campaign_id,
            status=CampaignStatus.FAILED,
            failure_reason=reason,
        )

    async def _notify(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.notifier:
            logger.debug(f"Notifier not configured, skipping {event}")
            return
        try:
            await self.notifier.notify(event, payload)
        except Exception as e:
            logger.error(f"Failed to send {event} notification: {e}")


__all__ = ["CampaignDispatcher", "NO_RECIPIENTS_REASON"]
