#!/usr/bin/env python3
"""Service configuration for peer platform services

Endpoints of the services the email campaign engine calls: the account
service (recipient directory) and the notification service (admin alerts).
"""
import os
from dataclasses import dataclass


@dataclass
class ServiceConfig:
    """Peer service endpoints"""

    # ===========================================
    # Peer Services
    # ===========================================
    # account_service - recipient directory
    account_service_url: str = "http://localhost:8202"

    # notification_service - admin notifications
    notification_service_url: str = "http://localhost:8206"

    # Request timeout for peer calls (seconds)
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        try:
            timeout = float(os.getenv("SERVICE_REQUEST_TIMEOUT", "30"))
        except ValueError:
            timeout = 30.0
        return cls(
            account_service_url=os.getenv("ACCOUNT_SERVICE_URL", "http://localhost:8202"),
            notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL", "http://localhost:8206"),
            request_timeout=timeout,
        )
