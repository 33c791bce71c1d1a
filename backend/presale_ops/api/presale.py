import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from presale_ops.blockchain.addresses import to_pubkey
from presale_ops.blockchain.base import quote_tokens
from presale_ops.core.exceptions import InvalidInput, RemoteReadError
from presale_ops.schemas.presale import (
    BuyerStateResponse,
    DerivedAddressesResponse,
    PresaleStateResponse,
    QuoteResponse,
    RefreshResponse,
    WalletBalancesResponse,
)
from presale_ops.services.reader import PresaleReader
from presale_ops.workers.poller import RepeatingTask

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/presale", tags=["presale"])


def get_reader(request: Request) -> PresaleReader:
    return request.app.state.reader


def get_poller(request: Request) -> RepeatingTask:
    return request.app.state.poller


def _loaded_presale(reader: PresaleReader):
    snap = reader.presale_snapshot
    if not snap.loaded:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=snap.error or "Presale state has not been loaded yet",
        )
    if snap.value is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Presale account not found on-chain",
        )
    return snap


@router.get(
    "/state",
    response_model=PresaleStateResponse,
    summary="Get cached presale state",
)
async def get_presale_state(reader: PresaleReader = Depends(get_reader)) -> PresaleStateResponse:
    """Last polled presale record and vault balance, flagged stale if the last poll failed."""
    snap = _loaded_presale(reader)
    vault = reader.vault_snapshot
    return PresaleStateResponse.from_record(
        presale_address=str(reader.config.presale_address),
        record=snap.value,
        vault_balance=vault.value if vault.loaded else None,
        fetched_at=snap.fetched_at,
        stale=snap.stale or vault.stale,
        error=snap.error or vault.error,
    )


@router.get(
    "/buyers/{wallet}",
    response_model=BuyerStateResponse,
    summary="Get a buyer's contribution totals",
)
async def get_buyer_state(
    wallet: str, reader: PresaleReader = Depends(get_reader)
) -> BuyerStateResponse:
    try:
        # Keep queried buyers fresh on every poll
        reader.track_buyer(wallet)
        record = await reader.get_buyer(wallet)
    except InvalidInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except RemoteReadError as e:
        logger.error(f"Failed to read buyer state for {wallet}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to read buyer state on-chain",
        )
    return BuyerStateResponse.from_record(record)


@router.get(
    "/wallets/{wallet}/balances",
    response_model=WalletBalancesResponse,
    summary="Get SOL and token balances of a wallet",
)
async def get_wallet_balances(
    wallet: str, reader: PresaleReader = Depends(get_reader)
) -> WalletBalancesResponse:
    try:
        owner = to_pubkey(wallet, "wallet")
    except InvalidInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        lamports, token_balance = await asyncio.gather(
            reader.get_sol_balance(owner), reader.get_token_balance(owner)
        )
    except RemoteReadError as e:
        logger.error(f"Failed to read balances for {wallet}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to read wallet balances on-chain",
        )

    return WalletBalancesResponse(
        wallet=str(owner),
        token_account=str(reader.config.addresses.token_account(owner)),
        lamports=lamports,
        token_balance=token_balance,
    )


@router.get(
    "/addresses",
    response_model=DerivedAddressesResponse,
    summary="Get derived presale addresses",
)
async def get_addresses(reader: PresaleReader = Depends(get_reader)) -> DerivedAddressesResponse:
    return DerivedAddressesResponse(addresses=reader.config.addresses.as_dict())


@router.get(
    "/quote",
    response_model=QuoteResponse,
    summary="Quote tokens for a SOL contribution",
)
async def get_quote(
    lamports: int = Query(..., gt=0, description="Contribution in lamports"),
    reader: PresaleReader = Depends(get_reader),
) -> QuoteResponse:
    """Local estimate from the cached rate; the program has the final word."""
    record = _loaded_presale(reader).value
    return QuoteResponse(
        lamports=lamports,
        rate=record.rate,
        tokens=quote_tokens(lamports, record.rate, reader.config.token_decimals),
        meets_entrance_fee=lamports >= record.entrance_fee,
        within_max_buy=lamports <= record.max_buy,
    )


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger an immediate poll",
)
async def refresh(poller: RepeatingTask = Depends(get_poller)) -> RefreshResponse:
    if not poller.running:
        return RefreshResponse(triggered=False)
    poller.trigger()
    return RefreshResponse(triggered=True)
