"""
Recipient Resolution

Expands a campaign's recipient specification into an ordered list of
recipients with their merge variables.
"""

import logging
from typing import Any, Dict, List, Optional

from .models import (
    DEFAULT_RECIPIENT_NAME,
    Campaign,
    Recipient,
    RecipientFilterKind,
)
from .protocols import RecipientDirectoryProtocol
from .templating import build_unsubscribe_url

logger = logging.getLogger(__name__)

CUSTOMER_ROLE = "customer"


class RecipientResolver:
    """Builds the audience for a campaign"""

    def __init__(self, directory: RecipientDirectoryProtocol, frontend_url: str):
        self.directory = directory
        self.frontend_url = frontend_url

    async def resolve(self, campaign: Campaign) -> List[Recipient]:
        """
        Resolve recipients for a campaign.

        A non-empty explicit list is used verbatim, in order. Otherwise the
        recipient filter selects directory accounts. An empty result is
        returned as an empty list.
        """
        if campaign.recipient_list:
            return [
                self._make_recipient(entry.email, entry.name, entry.variables)
                for entry in campaign.recipient_list
                if entry.email
            ]

        rows = await self._query_directory(campaign)
        recipients = []
        for row in rows:
            email = row.get("email")
            if not email:
                continue
            recipients.append(self._make_recipient(email, row.get("name")))

        logger.debug(
            f"Resolved {len(recipients)} recipients for campaign {campaign.campaign_id} "
            f"via filter {campaign.recipient_filter.kind.value}"
        )
        return recipients

    async def _query_directory(self, campaign: Campaign) -> List[Dict[str, Any]]:
        recipient_filter = campaign.recipient_filter
        if recipient_filter.kind == RecipientFilterKind.CUSTOMERS:
            return await self.directory.find_recipients(role=CUSTOMER_ROLE)
        if recipient_filter.kind == RecipientFilterKind.CUSTOM:
            return await self.directory.find_by_criteria(dict(recipient_filter.criteria))
        return await self.directory.find_recipients(role=None)

    def _make_recipient(
        self,
        email: str,
        name: Optional[str],
        overrides: Optional[Dict[str, str]] = None,
    ) -> Recipient:
        display_name = name or DEFAULT_RECIPIENT_NAME
        variables = {
            "name": display_name,
            "email": email,
            "unsubscribe_url": build_unsubscribe_url(self.frontend_url, email),
        }
        if overrides:
            variables.update(overrides)
        return Recipient(email=email, name=display_name, variables=variables)


__all__ = ["RecipientResolver", "CUSTOMER_ROLE"]
