"""
Email Campaign Service Clients

HTTP adapters for the mail provider and peer platform services.
"""

from .account_client import AccountDirectoryClient
from .mail_transport import ResendMailTransport
from .notification_client import AdminNotificationClient

__all__ = [
    "AccountDirectoryClient",
    "ResendMailTransport",
    "AdminNotificationClient",
]
