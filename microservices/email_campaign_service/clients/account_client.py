"""
Account Service Client

Recipient directory backed by account_service.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 1000


class AccountDirectoryClient:
    """Client for account_service used as the campaign recipient directory"""

    def __init__(self, base_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def find_recipients(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active accounts with an email, optionally restricted to a role"""
        params: Dict[str, Any] = {}
        if role:
            params["role"] = role
        return await self._list_accounts(params)

    async def find_by_criteria(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Active accounts matching arbitrary account_service filters"""
        params = {
            key: str(value).lower() if isinstance(value, bool) else value
            for key, value in criteria.items()
            if value is not None
        }
        return await self._list_accounts(params)

    async def _list_accounts(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        accounts: List[Dict[str, Any]] = []
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                for page in range(1, MAX_PAGES + 1):
                    response = await client.get(
                        f"{self.base_url}/api/v1/accounts",
                        params={**filters, "is_active": "true", "page": page, "page_size": PAGE_SIZE},
                    )
                    response.raise_for_status()
                    data = response.json()

                    for account in data.get("accounts", []):
                        if account.get("is_active", True) is False:
                            continue
                        accounts.append({"email": account.get("email"), "name": account.get("name")})

                    if not data.get("has_next"):
                        break

            return accounts

        except httpx.HTTPStatusError as e:
            logger.error(f"Error listing accounts: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error listing accounts: {e}")
            raise

    async def health_check(self) -> bool:
        """Check if account_service is healthy"""
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/health")
                return response.status_code == 200
        except Exception:
            return False


__all__ = ["AccountDirectoryClient"]
