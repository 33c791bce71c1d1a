"""
Remote state reader for the presale program.

Reads the presale record, buyer records and token balances from the ledger.
The presale, the vault and each tracked buyer keep their last result as a
snapshot; one-off wallet reads are not cached. A query that is already being
fetched is never fetched twice at the same time: concurrent callers share the
in-flight result.

The read path never needs a signer.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey

from presale_ops.blockchain.addresses import IdentityLike, to_pubkey
from presale_ops.blockchain.base import BuyerRecord, PresaleRecord
from presale_ops.blockchain.layouts import decode_buyer, decode_presale, decode_token_amount
from presale_ops.core.config import PresaleConfig
from presale_ops.core.exceptions import RemoteReadError

logger = logging.getLogger(__name__)

PRESALE_QUERY = "presale"
VAULT_QUERY = "vault"


def buyer_query(buyer: Pubkey) -> str:
    return f"buyer:{buyer}"


def token_query(owner: Pubkey) -> str:
    return f"token:{owner}"


def sol_query(owner: Pubkey) -> str:
    return f"sol:{owner}"


@dataclass
class Snapshot:
    """Last known result of one query."""
    value: Any = None
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None
    stale: bool = False

    @property
    def loaded(self) -> bool:
        return self.fetched_at is not None


class PresaleReader:
    """
    Cached, de-duplicated reads of one presale's on-chain state.

    A plain query joins a read of the same key that is already in flight, so
    its result may predate a write the caller has just confirmed. Callers that
    re-read after their own writes pass ``fresh=True``, which waits out any
    earlier in-flight read and then fetches again.

    At most ``config.max_tracked_buyers`` buyers are tracked; tracking one more
    evicts the least recently tracked buyer together with its snapshot.
    """

    def __init__(self, client: AsyncClient, config: PresaleConfig):
        self._client = client
        self._config = config
        self._snapshots: Dict[str, Snapshot] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        # buyer query key -> buyer, oldest first
        self._tracked_buyers: "OrderedDict[str, Pubkey]" = OrderedDict()

    @property
    def config(self) -> PresaleConfig:
        return self._config

    # --- Snapshots ---

    def snapshot(self, query: str) -> Snapshot:
        return self._snapshots.get(query) or Snapshot()

    @property
    def presale_snapshot(self) -> Snapshot:
        return self.snapshot(PRESALE_QUERY)

    @property
    def vault_snapshot(self) -> Snapshot:
        return self.snapshot(VAULT_QUERY)

    def buyer_snapshot(self, buyer: IdentityLike) -> Snapshot:
        return self.snapshot(buyer_query(to_pubkey(buyer, "buyer")))

    def is_fetching(self, query: str) -> bool:
        return query in self._inflight

    @property
    def tracked_buyers(self) -> List[Pubkey]:
        """Tracked buyers, least recently tracked first."""
        return list(self._tracked_buyers.values())

    def track_buyer(self, buyer: IdentityLike) -> None:
        """Include ``buyer`` in every periodic refresh and keep its snapshot."""
        buyer_key = to_pubkey(buyer, "buyer")
        query = buyer_query(buyer_key)
        self._tracked_buyers[query] = buyer_key
        self._tracked_buyers.move_to_end(query)
        while len(self._tracked_buyers) > max(self._config.max_tracked_buyers, 0):
            evicted, _ = self._tracked_buyers.popitem(last=False)
            self._snapshots.pop(evicted, None)
            logger.debug(f"reader: evicted {evicted}")

    def untrack_buyer(self, buyer: IdentityLike) -> None:
        query = buyer_query(to_pubkey(buyer, "buyer"))
        self._tracked_buyers.pop(query, None)
        self._snapshots.pop(query, None)

    def _keeps_snapshot(self, query: str) -> bool:
        return query in (PRESALE_QUERY, VAULT_QUERY) or query in self._tracked_buyers

    # --- Queries ---

    async def get_presale(self, fresh: bool = False) -> Optional[PresaleRecord]:
        """Fetch the presale record. Returns None if the account does not exist."""
        return await self._query(PRESALE_QUERY, self._fetch_presale, fresh)

    async def get_buyer(self, buyer: IdentityLike) -> BuyerRecord:
        """Fetch a buyer record; a buyer with no contribution yields the empty record."""
        buyer_key = to_pubkey(buyer, "buyer")
        return await self._query(
            buyer_query(buyer_key), lambda: self._fetch_buyer(buyer_key)
        )

    async def get_vault_balance(self, fresh: bool = False) -> int:
        """Token base units held by the vault (0 if the vault account is absent)."""
        return await self._query(
            VAULT_QUERY, lambda: self._fetch_token_amount(self._config.vault_address), fresh
        )

    async def get_token_balance(self, owner: IdentityLike, fresh: bool = False) -> int:
        """Token base units in ``owner``'s associated token account."""
        owner_key = to_pubkey(owner, "owner")
        token_account = self._config.addresses.token_account(owner_key)
        return await self._query(
            token_query(owner_key), lambda: self._fetch_token_amount(token_account), fresh
        )

    async def get_sol_balance(self, owner: IdentityLike) -> int:
        """Lamports held by ``owner``."""
        owner_key = to_pubkey(owner, "owner")
        return await self._query(sol_query(owner_key), lambda: self._fetch_lamports(owner_key))

    async def refresh_all(self) -> List[RemoteReadError]:
        """
        Refresh the presale, the vault and every tracked buyer.

        Queries run concurrently. Failures are returned rather than raised so
        one broken query does not hide the others.
        """
        coros: List[Awaitable[Any]] = [self.get_presale(), self.get_vault_balance()]
        coros.extend(self.get_buyer(buyer) for buyer in self.tracked_buyers)
        results = await asyncio.gather(*coros, return_exceptions=True)
        errors = []
        for result in results:
            if isinstance(result, RemoteReadError):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
        return errors

    # --- Internals ---

    async def _query(
        self, query: str, fetch: Callable[[], Awaitable[Any]], fresh: bool = False
    ) -> Any:
        task = self._inflight.get(query)
        if task is not None and fresh:
            logger.debug(f"reader: waiting out in-flight {query} read before a fresh one")
            await asyncio.wait([task])
            task = self._inflight.get(query)
        if task is None:
            task = asyncio.ensure_future(self._refresh(query, fetch))
            self._inflight[query] = task
            task.add_done_callback(lambda t: self._forget(query, t))
        else:
            logger.debug(f"reader: joining in-flight {query} read")
        # shield: one caller being cancelled must not cancel the shared read
        return await asyncio.shield(task)

    def _forget(self, query: str, task: asyncio.Task) -> None:
        if self._inflight.get(query) is task:
            del self._inflight[query]

    async def _refresh(self, query: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await fetch()
        except Exception as e:
            if self._keeps_snapshot(query):
                previous = self._snapshots.get(query) or Snapshot()
                self._snapshots[query] = Snapshot(
                    value=previous.value,
                    fetched_at=previous.fetched_at,
                    error=str(e),
                    stale=True,
                )
            logger.warning(f"reader: {query} read failed: {e}")
            raise RemoteReadError(query, e) from e

        if self._keeps_snapshot(query):
            self._snapshots[query] = Snapshot(value=value, fetched_at=datetime.now(timezone.utc))
        return value

    async def _fetch_account(self, address: Pubkey) -> Optional[bytes]:
        resp = await self._client.get_account_info(address, commitment=Confirmed)
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def _fetch_presale(self) -> Optional[PresaleRecord]:
        data = await self._fetch_account(self._config.presale_address)
        if data is None:
            logger.info(f"reader: presale account {self._config.presale_address} not found")
            return None
        return decode_presale(data)

    async def _fetch_buyer(self, buyer: Pubkey) -> BuyerRecord:
        buyer_address = self._config.addresses.buyer(buyer).address
        data = await self._fetch_account(buyer_address)
        if data is None:
            return BuyerRecord.empty(self._config.presale_address, buyer)
        return decode_buyer(data)

    async def _fetch_token_amount(self, token_account: Pubkey) -> int:
        data = await self._fetch_account(token_account)
        if data is None:
            return 0
        return decode_token_amount(data)

    async def _fetch_lamports(self, owner: Pubkey) -> int:
        resp = await self._client.get_balance(owner, commitment=Confirmed)
        return resp.value
