from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from presale_ops.blockchain.base import BuyerRecord, PresaleRecord


class PresaleStateResponse(BaseModel):
    """Cached on-chain presale state."""
    presale_address: str
    owner: str
    wallet: str
    token_mint: str
    token_vault: str
    rate: int = Field(..., description="Tokens per SOL multiplied by RATE_SCALE")
    entrance_fee: int = Field(..., description="Minimum contribution in lamports")
    max_buy: int = Field(..., description="Per-transaction cap in lamports")
    soft_cap: int
    hard_cap: int
    lamports_raised: int
    tokens_sold: int
    is_open: bool
    is_finalized: bool
    status: str = Field(..., description="Finalized, Live or Closed")
    progress_pct: float = Field(..., ge=0, le=100)
    vault_balance: Optional[int] = Field(None, description="Token base units in the vault")
    fetched_at: Optional[datetime] = None
    stale: bool = Field(False, description="True when the last refresh failed")
    error: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        presale_address: str,
        record: PresaleRecord,
        vault_balance: Optional[int],
        fetched_at: Optional[datetime],
        stale: bool,
        error: Optional[str],
    ) -> "PresaleStateResponse":
        return cls(
            presale_address=presale_address,
            owner=str(record.owner),
            wallet=str(record.wallet),
            token_mint=str(record.token_mint),
            token_vault=str(record.token_vault),
            rate=record.rate,
            entrance_fee=record.entrance_fee,
            max_buy=record.max_buy,
            soft_cap=record.soft_cap,
            hard_cap=record.hard_cap,
            lamports_raised=record.lamports_raised,
            tokens_sold=record.tokens_sold,
            is_open=record.is_open,
            is_finalized=record.is_finalized,
            status=record.status_label,
            progress_pct=round(record.progress_pct, 2),
            vault_balance=vault_balance,
            fetched_at=fetched_at,
            stale=stale,
            error=error,
        )


class BuyerStateResponse(BaseModel):
    """Per-buyer totals. Zero when the buyer has never contributed."""
    buyer: str
    presale: str
    contributed_lamports: int
    tokens_purchased: int
    exists: bool

    @classmethod
    def from_record(cls, record: BuyerRecord) -> "BuyerStateResponse":
        return cls(
            buyer=str(record.buyer),
            presale=str(record.presale),
            contributed_lamports=record.contributed_lamports,
            tokens_purchased=record.tokens_purchased,
            exists=record.exists,
        )


class WalletBalancesResponse(BaseModel):
    wallet: str
    token_account: str
    lamports: int
    token_balance: int


class QuoteResponse(BaseModel):
    lamports: int
    rate: int
    tokens: int = Field(..., description="Token base units the contribution buys")
    meets_entrance_fee: bool
    within_max_buy: bool


class DerivedAddressesResponse(BaseModel):
    """Derived addresses for transaction building."""
    addresses: Dict[str, Any] = Field(
        ...,
        description="Named addresses with their derivation data"
    )


class RefreshResponse(BaseModel):
    triggered: bool
