#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure for the services in this repository.

COMPONENTS:
    - config/: Environment-driven configuration (infrastructure, peer services, logging)
    - postgres_client.py: Async PostgreSQL client over an asyncpg pool

USAGE:
    from core.config import get_settings
    from core.postgres_client import AsyncPostgresClient

    settings = get_settings()
    db = AsyncPostgresClient.from_config(settings.infrastructure, "email_campaign_service")
"""

__version__ = "2.1.0"
