"""
Email Campaign Service Factory

Builds the engine components once, with proper dependency injection.
"""

import logging
from typing import Optional

from core.config import PlatformConfig, get_settings

from .campaign_repository import CampaignRepository
from .campaign_service import EmailCampaignService
from .clients.account_client import AccountDirectoryClient
from .clients.mail_transport import ResendMailTransport
from .clients.notification_client import AdminNotificationClient
from .config import CampaignEngineConfig
from .dispatcher import CampaignDispatcher
from .event_recorder import EventRecorder
from .protocols import (
    CampaignStoreProtocol,
    DeliveryEventStoreProtocol,
    MailTransportProtocol,
    NotificationSinkProtocol,
    RecipientDirectoryProtocol,
)
from .recipient_resolver import RecipientResolver
from .scheduler import CampaignScheduler

logger = logging.getLogger(__name__)


class EmailCampaignServiceFactory:
    """Factory for creating email campaign service components"""

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        engine_config: Optional[CampaignEngineConfig] = None,
        store: Optional[CampaignStoreProtocol] = None,
        event_store: Optional[DeliveryEventStoreProtocol] = None,
        transport: Optional[MailTransportProtocol] = None,
        directory: Optional[RecipientDirectoryProtocol] = None,
        notifier: Optional[NotificationSinkProtocol] = None,
    ):
        self.config = config or get_settings()
        self.engine_config = engine_config or CampaignEngineConfig.from_env()

        # Injected overrides (tests); real adapters are built in initialize()
        self._store = store
        self._event_store = event_store
        self._transport = transport
        self._directory = directory
        self._notifier = notifier

        self._recorder: Optional[EventRecorder] = None
        self._dispatcher: Optional[CampaignDispatcher] = None
        self._scheduler: Optional[CampaignScheduler] = None
        self._service: Optional[EmailCampaignService] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Email Campaign Service components...")
        engine = self.engine_config
        services = self.config.services

        # Initialize repository
        if self._store is None:
            repository = CampaignRepository(config=self.config)
            await repository.initialize()
            self._store = repository
        if self._event_store is None:
            self._event_store = self._store

        # Initialize external adapters
        if self._transport is None:
            self._transport = ResendMailTransport(
                api_key=engine.resend_api_key,
                from_email=engine.default_from_email,
                base_url=engine.resend_base_url,
            )
        if self._directory is None:
            self._directory = AccountDirectoryClient(
                base_url=services.account_service_url,
                timeout=services.request_timeout,
            )
        if self._notifier is None:
            self._notifier = AdminNotificationClient(
                base_url=services.notification_service_url,
                recipient_id=engine.admin_notification_recipient,
            )

        # Engine
        self._recorder = EventRecorder(self._event_store, self._store)
        self._dispatcher = CampaignDispatcher(
            store=self._store,
            resolver=RecipientResolver(self._directory, engine.frontend_url),
            transport=self._transport,
            recorder=self._recorder,
            notifier=self._notifier,
            api_url=engine.api_url,
            frontend_url=engine.frontend_url,
            default_from_name=engine.default_from_name,
            default_reply_to=engine.default_reply_to,
            batch_size=engine.batch_size,
            max_concurrency=engine.max_concurrency,
            batch_delay_seconds=engine.batch_delay_seconds,
        )
        self._scheduler = CampaignScheduler(
            store=self._store,
            dispatcher=self._dispatcher,
            missed_fire_policy=engine.missed_fire_policy,
        )
        self._scheduler.start()
        self._service = EmailCampaignService(
            store=self._store,
            scheduler=self._scheduler,
            dispatcher=self._dispatcher,
            recorder=self._recorder,
            notifier=self._notifier,
        )
        self._initialized = True

        logger.info("Email Campaign Service components initialized")

    async def close(self) -> None:
        """Stop triggers, drain dispatch runs and close connections"""
        logger.info("Closing Email Campaign Service components...")

        if self._scheduler:
            await self._scheduler.shutdown()

        if self._dispatcher:
            await self._dispatcher.shutdown(timeout=self.engine_config.shutdown_timeout_seconds)

        close_transport = getattr(self._transport, "close", None)
        if close_transport:
            await close_transport()

        if self._store:
            await self._store.close()

        logger.info("Email Campaign Service components closed")

    @property
    def store(self) -> CampaignStoreProtocol:
        """Get campaign store"""
        if not self._initialized:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._store

    @property
    def service(self) -> EmailCampaignService:
        """Get email campaign service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def scheduler(self) -> CampaignScheduler:
        """Get campaign scheduler"""
        if not self._scheduler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._scheduler

    @property
    def dispatcher(self) -> CampaignDispatcher:
        """Get campaign dispatcher"""
        if not self._dispatcher:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._dispatcher

    @property
    def recorder(self) -> EventRecorder:
        """Get event recorder"""
        if not self._recorder:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._recorder


__all__ = ["EmailCampaignServiceFactory"]
