#!/usr/bin/env python3
"""Email campaign engine configuration"""
import os
from dataclasses import dataclass
from typing import Optional

from .models import MissedFirePolicy

def _int(val: str, default: int) -> int:
    try:
        value = int(val) if val else default
    except ValueError:
        return default
    return value if value > 0 else default

def _float(val: str, default: float) -> float:
    try:
        value = float(val) if val else default
    except ValueError:
        return default
    return value if value >= 0 else default

def _policy(val: str) -> MissedFirePolicy:
    try:
        return MissedFirePolicy((val or "").strip().lower())
    except ValueError:
        return MissedFirePolicy.FIRE


@dataclass
class CampaignEngineConfig:
    """Dispatch tuning, tracking links and provider credentials"""

    # ===========================================
    # Dispatch shaping
    # ===========================================
    batch_size: int = 50
    max_concurrency: int = 10
    batch_delay_seconds: float = 1.0
    shutdown_timeout_seconds: float = 30.0

    # ===========================================
    # Scheduling
    # ===========================================
    missed_fire_policy: MissedFirePolicy = MissedFirePolicy.FIRE

    # ===========================================
    # Links
    # ===========================================
    frontend_url: str = "http://localhost:3000"
    api_url: str = "http://localhost:8252"

    # ===========================================
    # Sender defaults
    # ===========================================
    default_from_name: str = "StyleShop"
    default_from_email: str = "campaigns@styleshop.local"
    default_reply_to: Optional[str] = None

    # ===========================================
    # Mail provider (Resend)
    # ===========================================
    resend_api_key: Optional[str] = None
    resend_base_url: str = "https://api.resend.com"

    # ===========================================
    # Admin notifications
    # ===========================================
    admin_notification_recipient: str = "admin"

    @classmethod
    def from_env(cls) -> 'CampaignEngineConfig':
        """Load engine config from environment variables"""
        return cls(
            batch_size=_int(os.getenv("CAMPAIGN_BATCH_SIZE", "50"), 50),
            max_concurrency=_int(os.getenv("CAMPAIGN_MAX_CONCURRENCY", "10"), 10),
            batch_delay_seconds=_float(os.getenv("CAMPAIGN_BATCH_DELAY_SECONDS", "1.0"), 1.0),
            shutdown_timeout_seconds=_float(os.getenv("CAMPAIGN_SHUTDOWN_TIMEOUT_SECONDS", "30"), 30.0),
            missed_fire_policy=_policy(os.getenv("CAMPAIGN_MISSED_FIRE_POLICY", "fire")),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            api_url=os.getenv("API_URL", "http://localhost:8252"),
            default_from_name=os.getenv("CAMPAIGN_FROM_NAME", "StyleShop"),
            default_from_email=os.getenv("CAMPAIGN_FROM_EMAIL") or os.getenv("EMAIL_FROM", "campaigns@styleshop.local"),
            default_reply_to=os.getenv("CAMPAIGN_REPLY_TO"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            resend_base_url=os.getenv("RESEND_BASE_URL", "https://api.resend.com"),
            admin_notification_recipient=os.getenv("CAMPAIGN_ADMIN_RECIPIENT", "admin"),
        )
