"""
Email Campaign Service

Email campaign scheduling and delivery engine providing:
- One-shot scheduled triggers, rebuilt from storage on startup
- Batched, concurrency-bounded mail-merge dispatch
- Append-only delivery events with open/click tracking and rollup analytics

Port: 8252
"""

__version__ = "1.0.0"
__service__ = "email_campaign_service"
