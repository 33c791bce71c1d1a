"""
Record types and the signer interface for the presale program.

The records mirror the program's Anchor accounts field for field. The signer
is the only component that touches key material; everything else receives an
instance of it by injection.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List

from solders.pubkey import Pubkey
from solders.transaction import Transaction

from presale_ops.core.constants import LAMPORTS_PER_SOL, RATE_SCALE


class SaleState(str, Enum):
    """Lifecycle state derived from the two presale flags."""
    FINALIZED = "Finalized"
    OPEN_LIVE = "OpenLive"
    CLOSED_PENDING = "ClosedPending"


STATUS_LABELS = {
    SaleState.FINALIZED: "Finalized",
    SaleState.OPEN_LIVE: "Live",
    SaleState.CLOSED_PENDING: "Closed",
}


@dataclass(frozen=True)
class PresaleRecord:
    """Decoded `Presale` account."""
    owner: Pubkey
    token_mint: Pubkey
    token_vault: Pubkey
    wallet: Pubkey
    rate: int               # tokens per SOL × RATE_SCALE
    entrance_fee: int       # lamports
    max_buy: int            # lamports
    soft_cap: int           # lamports
    hard_cap: int           # lamports
    lamports_raised: int
    tokens_sold: int        # token base units
    is_open: bool
    is_finalized: bool
    bump: int

    @property
    def state(self) -> SaleState:
        # Finalized wins: it is the precondition the reconciler cares about
        if self.is_finalized:
            return SaleState.FINALIZED
        if self.is_open:
            return SaleState.OPEN_LIVE
        return SaleState.CLOSED_PENDING

    @property
    def status_label(self) -> str:
        return STATUS_LABELS[self.state]

    @property
    def progress_pct(self) -> float:
        if self.hard_cap <= 0:
            return 0.0
        return min(self.lamports_raised / self.hard_cap * 100, 100.0)


@dataclass(frozen=True)
class BuyerRecord:
    """Decoded `BuyerState` account, or the empty state when absent."""
    presale: Pubkey
    buyer: Pubkey
    contributed_lamports: int
    tokens_purchased: int
    bump: int
    exists: bool = True

    @classmethod
    def empty(cls, presale: Pubkey, buyer: Pubkey) -> "BuyerRecord":
        return cls(
            presale=presale,
            buyer=buyer,
            contributed_lamports=0,
            tokens_purchased=0,
            bump=0,
            exists=False,
        )


def quote_tokens(lamports: int, rate: int, token_decimals: int = 9) -> int:
    """
    Token base units a contribution of ``lamports`` buys at ``rate``.

    rate is whole tokens per SOL scaled by RATE_SCALE, so:
        tokens = lamports / 10^9 * rate / RATE_SCALE * 10^decimals
    """
    if lamports <= 0 or rate <= 0:
        return 0
    return lamports * rate * 10**token_decimals // (LAMPORTS_PER_SOL * RATE_SCALE)


class Signer(ABC):
    """
    Signing capability bound to exactly one identity.

    Implementations may wrap a local keypair, a hardware wallet or a remote
    signing service; callers never see key material.
    """

    @abstractmethod
    def pubkey(self) -> Pubkey:
        """Identity this signer is bound to."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: Transaction) -> Transaction:
        """Add this signer's signature to ``tx`` and return it."""
        pass

    @abstractmethod
    async def sign_all_transactions(self, txs: List[Transaction]) -> List[Transaction]:
        """Sign several transactions in one request."""
        pass
