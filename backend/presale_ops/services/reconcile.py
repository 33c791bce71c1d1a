"""
Presale reconciliation workflow.

Drives the presale towards "open and funded":

  1. reopen_finalize: if finalized, call reopen_finalize_sale
  2. fund_vault: if the vault is empty, move up to the funding ceiling
     from the signer's token account
  3. open_sale: if closed, call open_sale
  4. report: read the final state

Every step re-reads the state it depends on before acting, so the procedure
can be re-run from the top after a partial failure. On a presale that is
already open and funded it issues no writes at all.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from solders.pubkey import Pubkey

from presale_ops.blockchain.base import PresaleRecord, SaleState
from presale_ops.core.exceptions import NotFound, PresaleError, ReconcileError
from presale_ops.services.orchestrator import TransactionOrchestrator
from presale_ops.services.reader import PresaleReader

logger = logging.getLogger(__name__)


class ReconcileStep(str, Enum):
    REOPEN_FINALIZE = "reopen_finalize"
    FUND_VAULT = "fund_vault"
    OPEN_SALE = "open_sale"
    REPORT = "report"


@dataclass(frozen=True)
class ReconcileAction:
    step: ReconcileStep
    signature: str
    amount: Optional[int] = None


@dataclass
class ReconcileOutcome:
    initial: PresaleRecord
    final: PresaleRecord
    vault_balance: int
    actions: List[ReconcileAction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.final.is_open

    @property
    def is_finalized(self) -> bool:
        return self.final.is_finalized

    @property
    def changed(self) -> bool:
        return bool(self.actions)


class PresaleNotFound(NotFound):
    """The presale account does not exist; provisioning is out of scope."""


class ReconciliationWorkflow:
    """Re-entrant operator procedure composed of a reader and an orchestrator."""

    def __init__(
        self,
        reader: PresaleReader,
        orchestrator: TransactionOrchestrator,
        funding_ceiling: Optional[int] = None,
    ):
        self._reader = reader
        self._orchestrator = orchestrator
        self._funding_ceiling = (
            funding_ceiling if funding_ceiling is not None else reader.config.funding_ceiling
        )

    @property
    def funding_ceiling(self) -> int:
        return self._funding_ceiling

    async def run(self) -> ReconcileOutcome:
        actions: List[ReconcileAction] = []
        warnings: List[str] = []

        step = ReconcileStep.REOPEN_FINALIZE
        try:
            initial = await self._read_presale()
            logger.info(
                f"reconcile: initial state {initial.state.value} "
                f"(open={initial.is_open}, finalized={initial.is_finalized})"
            )
            await self._reopen_finalize(initial, actions)

            step = ReconcileStep.FUND_VAULT
            await self._fund_vault(actions, warnings)

            step = ReconcileStep.OPEN_SALE
            await self._open_sale(actions, warnings)

            step = ReconcileStep.REPORT
            final = await self._read_presale()
            vault_balance = await self._reader.get_vault_balance(fresh=True)
        except PresaleError as e:
            logger.error(f"reconcile: step {step.value} failed: {e}")
            raise ReconcileError(step.value, e, actions) from e

        logger.info(
            f"reconcile: done, open={final.is_open} finalized={final.is_finalized} "
            f"vault={vault_balance} actions={len(actions)}"
        )
        return ReconcileOutcome(
            initial=initial,
            final=final,
            vault_balance=vault_balance,
            actions=actions,
            warnings=warnings,
        )

    async def _read_presale(self) -> PresaleRecord:
        presale = await self._reader.get_presale(fresh=True)
        if presale is None:
            raise PresaleNotFound(str(self._reader.config.presale_address))
        return presale

    async def _reopen_finalize(self, presale: PresaleRecord, actions: List[ReconcileAction]) -> None:
        if presale.state is not SaleState.FINALIZED:
            logger.info("reconcile: sale is not finalized, skipping reopen_finalize_sale")
            return
        logger.info("reconcile: calling reopen_finalize_sale")
        sig = await self._orchestrator.reopen_finalize_sale()
        actions.append(ReconcileAction(ReconcileStep.REOPEN_FINALIZE, sig))

    def _funding_source(self) -> Pubkey:
        """Wallet whose token account fund_vault debits: the bound signer."""
        signer = self._orchestrator.signer
        if signer is None:
            return self._reader.config.owner
        return signer.pubkey()

    async def _fund_vault(self, actions: List[ReconcileAction], warnings: List[str]) -> None:
        source = self._funding_source()
        vault_balance = await self._reader.get_vault_balance(fresh=True)
        owner_balance = await self._reader.get_token_balance(source, fresh=True)
        logger.info(f"reconcile: vault={vault_balance} funder {source}={owner_balance}")

        if vault_balance > 0:
            logger.info("reconcile: vault already has tokens, skipping funding")
            return
        if owner_balance <= 0:
            message = "Vault is empty and owner has no tokens to fund it"
            logger.warning(f"reconcile: {message}")
            warnings.append(message)
            return

        amount = min(owner_balance, self._funding_ceiling)
        logger.info(f"reconcile: funding vault with {amount} base units")
        sig = await self._orchestrator.fund_vault(amount)
        actions.append(ReconcileAction(ReconcileStep.FUND_VAULT, sig, amount))

    async def _open_sale(self, actions: List[ReconcileAction], warnings: List[str]) -> None:
        presale = await self._read_presale()
        if presale.is_open:
            logger.info("reconcile: sale is already open, skipping open_sale")
            return
        if presale.is_finalized:
            # Whether the program forbids opening a finalized sale is unknown here
            message = "Sale is still finalized before open_sale"
            logger.warning(f"reconcile: {message}")
            warnings.append(message)
        logger.info("reconcile: calling open_sale")
        sig = await self._orchestrator.open_sale()
        actions.append(ReconcileAction(ReconcileStep.OPEN_SALE, sig))
