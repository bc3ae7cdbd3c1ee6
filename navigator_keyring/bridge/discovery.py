"""
Account discovery: paging through device accounts and the BIP44 gap check.

BIP44: "Software should prevent a creation of an account if a previous
account does not have a transaction history (meaning none of its addresses
have been used before)." A page therefore stops at the first candidate
without history when the gap check is enabled.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from ..models import DeviceAccount

logger = logging.getLogger("navigator.keyring.bridge")

Derive = Callable[[int], Awaitable[str]]
HistoryCheck = Callable[[str], Awaitable[bool]]


class ActivityChecker:
    """Ask a chain indexer whether an address has prior transactions.

    ``GET <indexer>/address=<addr>?format=json`` answers ``{"d": [...]}``.
    Network failures, non-2xx statuses and unreadable bodies count as
    "no history".
    """

    def __init__(
        self,
        indexer_url: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.indexer_url = indexer_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    def url_for(self, address: str) -> str:
        return f"{self.indexer_url}/address={address}?format=json"

    async def __call__(self, address: str) -> bool:
        return await self.has_activity(address)

    async def has_activity(self, address: str) -> bool:
        url = self.url_for(address)
        try:
            if self._session is not None:
                return await self._fetch(self._session, url)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._fetch(session, url)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
            logger.warning("Activity check failed for %s: %s", address, err)
            return False

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> bool:
        async with session.get(url) as response:
            if not 200 <= response.status < 300:
                logger.debug("Indexer answered %s for %s", response.status, url)
                return False
            data = await response.json(content_type=None)
        if not isinstance(data, dict):
            return False
        return bool(data.get("d"))


class AccountPager:
    """Page state over a derivation function.

    ``page`` starts at 0; moving the page clamps it to 1 or more and returns
    the accounts for indexes ``[(page - 1) * per_page, page * per_page)``.

    Args:
        derive: coroutine returning the address at an index.
        per_page: page size.
        has_history: optional coroutine; when it returns False for a
            candidate, the candidate is kept and the page stops there.
    """

    def __init__(self, derive: Derive, per_page: int = 5, has_history: Optional[HistoryCheck] = None):
        self.derive = derive
        self.per_page = per_page
        self.has_history = has_history
        self.page = 0

    def reset(self) -> None:
        self.page = 0

    def _advance(self, increment: int) -> range:
        self.page += increment
        if self.page <= 0:
            self.page = 1
        start = (self.page - 1) * self.per_page
        return range(start, start + self.per_page)

    async def first_page(self) -> list[DeviceAccount]:
        self.page = 0
        return await self._get_page(1)

    async def next_page(self) -> list[DeviceAccount]:
        return await self._get_page(1)

    async def previous_page(self) -> list[DeviceAccount]:
        return await self._get_page(-1)

    async def _get_page(self, increment: int) -> list[DeviceAccount]:
        accounts: list[DeviceAccount] = []
        for index in self._advance(increment):
            address = await self.derive(index)
            accounts.append(DeviceAccount(address=address, index=index))
            if self.has_history is not None and not await self.has_history(address):
                break
        return accounts
