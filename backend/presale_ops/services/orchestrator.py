"""
Transaction orchestrator for the presale program.

Turns local intents (buy, open, close, finalize, reopen, set-parameter,
fund-vault) into instructions with the account set the program expects, has
the injected signer sign them, submits, and waits for `confirmed` commitment.

Nothing is updated locally after a write; callers refresh the reader.
"""

import asyncio
import logging
from typing import List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.instructions import TransferParams, transfer

from presale_ops.blockchain.base import Signer
from presale_ops.blockchain.layouts import check_u64, encode_instruction
from presale_ops.core.config import PresaleConfig
from presale_ops.core.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from presale_ops.core.exceptions import (
    ActionFailed,
    NotReady,
    OperationInProgress,
    PresaleError,
    Timeout,
)

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)
TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)


def _meta(pubkey: Pubkey, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


# --- Instruction builders ---

def build_buy_ix(config: PresaleConfig, buyer: Pubkey, lamports: int) -> Instruction:
    buyer_state = config.addresses.buyer(buyer).address
    beneficiary_token = config.addresses.token_account(buyer)
    accounts = [
        _meta(buyer, signer=True, writable=True),
        _meta(buyer, writable=True),                      # beneficiary
        _meta(config.presale_address, writable=True),
        _meta(config.token_mint),
        _meta(config.vault_address, writable=True),
        _meta(beneficiary_token, writable=True),
        _meta(buyer_state, writable=True),
        _meta(config.owner, writable=True),               # wallet of record
        _meta(TOKEN_PROGRAM),
        _meta(ASSOCIATED_TOKEN_PROGRAM),
        _meta(SYSTEM_PROGRAM),
    ]
    return Instruction(config.program_id, encode_instruction("buy", lamports), accounts)


def build_open_sale_ix(config: PresaleConfig, owner: Pubkey) -> Instruction:
    accounts = [
        _meta(owner, signer=True),
        _meta(config.presale_address, writable=True),
        _meta(config.vault_address),
    ]
    return Instruction(config.program_id, encode_instruction("open_sale"), accounts)


def build_owner_ix(config: PresaleConfig, owner: Pubkey, name: str, *args: int) -> Instruction:
    """Owner-only instruction touching just the presale account."""
    accounts = [
        _meta(owner, signer=True),
        _meta(config.presale_address, writable=True),
    ]
    return Instruction(config.program_id, encode_instruction(name, *args), accounts)


def build_finalize_sale_ix(config: PresaleConfig, owner: Pubkey) -> Instruction:
    destination = config.addresses.token_account(owner)
    accounts = [
        _meta(owner, signer=True, writable=True),
        _meta(config.presale_address, writable=True),
        _meta(config.vault_address, writable=True),
        _meta(destination, writable=True),
        _meta(TOKEN_PROGRAM),
    ]
    return Instruction(config.program_id, encode_instruction("finalize_sale"), accounts)


def build_fund_vault_ix(config: PresaleConfig, owner: Pubkey, amount: int) -> Instruction:
    """Plain SPL transfer from the owner's token account into the vault."""
    return transfer(
        TransferParams(
            program_id=TOKEN_PROGRAM,
            source=config.addresses.token_account(owner),
            dest=config.vault_address,
            owner=owner,
            amount=amount,
        )
    )


def truncate(message: str, limit: int) -> str:
    message = " ".join(message.split())
    if len(message) <= limit:
        return message
    return message[: max(limit - 3, 0)] + "..."


class TransactionOrchestrator:
    """
    Write side of the presale client, bound to at most one signer.

    Only one intent may be outstanding at a time; a second one is rejected
    with OperationInProgress rather than queued.
    """

    def __init__(
        self,
        client: AsyncClient,
        config: PresaleConfig,
        signer: Optional[Signer] = None,
    ):
        self._client = client
        self._config = config
        self._signer = signer
        self._pending: Optional[str] = None

    @property
    def signer(self) -> Optional[Signer]:
        return self._signer

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    @property
    def pending_action(self) -> Optional[str]:
        return self._pending

    def bind_signer(self, signer: Optional[Signer]) -> None:
        if self._pending is not None:
            raise OperationInProgress("bind_signer", self._pending)
        self._signer = signer

    # --- Intents ---

    async def buy(self, lamports: int) -> str:
        """Contribute ``lamports``; tokens go to the buyer's associated token account."""
        check_u64(lamports, "lamports")
        signer = self._require_signer("buy")
        return await self._execute("buy", [build_buy_ix(self._config, signer.pubkey(), lamports)])

    async def open_sale(self) -> str:
        signer = self._require_signer("open_sale")
        return await self._execute("open_sale", [build_open_sale_ix(self._config, signer.pubkey())])

    async def close_sale(self) -> str:
        signer = self._require_signer("close_sale")
        return await self._execute(
            "close_sale", [build_owner_ix(self._config, signer.pubkey(), "close_sale")]
        )

    async def finalize_sale(self) -> str:
        signer = self._require_signer("finalize_sale")
        return await self._execute(
            "finalize_sale", [build_finalize_sale_ix(self._config, signer.pubkey())]
        )

    async def reopen_finalize_sale(self) -> str:
        signer = self._require_signer("reopen_finalize_sale")
        return await self._execute(
            "reopen_finalize_sale",
            [build_owner_ix(self._config, signer.pubkey(), "reopen_finalize_sale")],
        )

    async def set_rate(self, rate: int) -> str:
        """Set tokens-per-SOL, already multiplied by RATE_SCALE."""
        check_u64(rate, "rate")
        signer = self._require_signer("set_rate")
        return await self._execute(
            "set_rate", [build_owner_ix(self._config, signer.pubkey(), "set_rate", rate)]
        )

    async def set_entrance_fee(self, lamports: int) -> str:
        check_u64(lamports, "entrance_fee")
        signer = self._require_signer("set_entrance_fee")
        return await self._execute(
            "set_entrance_fee",
            [build_owner_ix(self._config, signer.pubkey(), "set_entrance_fee", lamports)],
        )

    async def set_max_buy(self, lamports: int) -> str:
        check_u64(lamports, "max_buy")
        signer = self._require_signer("set_max_buy")
        return await self._execute(
            "set_max_buy",
            [build_owner_ix(self._config, signer.pubkey(), "set_max_buy", lamports)],
        )

    async def fund_vault(self, amount: int) -> str:
        """Transfer ``amount`` token base units from the signer's token account to the vault."""
        check_u64(amount, "amount")
        signer = self._require_signer("fund_vault")
        return await self._execute(
            "fund_vault", [build_fund_vault_ix(self._config, signer.pubkey(), amount)]
        )

    # --- Internals ---

    def _require_signer(self, action: str) -> Signer:
        if self._signer is None:
            raise NotReady(f"Cannot {action}: no signer connected")
        return self._signer

    async def _execute(self, action: str, instructions: List[Instruction]) -> str:
        if self._pending is not None:
            raise OperationInProgress(action, self._pending)
        signer = self._require_signer(action)
        self._pending = action
        try:
            return await self._sign_send_confirm(action, signer, instructions)
        except PresaleError:
            raise
        except Exception as e:
            cause = truncate(str(e) or type(e).__name__, self._config.error_message_max_length)
            logger.error(f"{action} failed: {cause}")
            raise ActionFailed(action, cause) from e
        finally:
            self._pending = None

    async def _sign_send_confirm(
        self, action: str, signer: Signer, instructions: List[Instruction]
    ) -> str:
        blockhash_resp = await self._client.get_latest_blockhash(Confirmed)
        recent_blockhash = blockhash_resp.value.blockhash

        msg = Message.new_with_blockhash(instructions, signer.pubkey(), recent_blockhash)
        tx = await signer.sign_transaction(Transaction.new_unsigned(msg))

        resp = await self._client.send_transaction(tx, opts=TxOpts(preflight_commitment=Confirmed))
        sig = resp.value
        logger.info(f"{action} tx sent: {sig}")

        timeout = self._config.confirm_timeout_seconds
        try:
            confirmation = await asyncio.wait_for(
                self._client.confirm_transaction(sig, commitment=Confirmed),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"{action} tx {sig} not confirmed after {timeout:g}s")
            raise Timeout(action, str(sig), timeout)

        statuses = getattr(confirmation, "value", None) or []
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            logger.error(f"{action} tx {sig} failed on-chain: {status.err}")
            cause = truncate(f"transaction failed: {status.err}", self._config.error_message_max_length)
            raise ActionFailed(action, cause)

        logger.info(f"{action} tx confirmed: {sig}")
        return str(sig)
