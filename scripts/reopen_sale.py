#!/usr/bin/env python3
"""
reopen_sale.py: Bring the presale back to "open and funded".

Steps (each skipped when already satisfied):
    1. reopen_finalize_sale if the sale is finalized
    2. fund the vault from the owner's token account if the vault is empty
    3. open_sale if the sale is closed

Safe to re-run after a partial failure. The owner key comes from
OWNER_PRIVATE_KEY (base58) or else KEYPAIR_PATH (default
~/.config/solana/id.json); the presale is derived from that owner and
PRESALE_TOKEN_MINT.

Usage:
    python scripts/reopen_sale.py
"""

import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from presale_ops.blockchain.signer import signer_from_settings
from presale_ops.core.config import PresaleConfig, configure_logging, get_settings
from presale_ops.core.exceptions import PresaleError, ReconcileError
from presale_ops.services.orchestrator import TransactionOrchestrator
from presale_ops.services.reader import PresaleReader
from presale_ops.services.reconcile import ReconcileOutcome, ReconciliationWorkflow

# ── Paths ──────────────────────────────────────────────────────
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent

# ── Colors ─────────────────────────────────────────────────────
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
CYAN = "\033[0;36m"
NC = "\033[0m"


def log(msg: str) -> None:
    print(f"{CYAN}[reopen]{NC} {msg}")


def ok(msg: str) -> None:
    print(f"{GREEN}[  ok  ]{NC} {msg}")


def warn(msg: str) -> None:
    print(f"{YELLOW}[ warn ]{NC} {msg}")


def err(msg: str) -> None:
    print(f"{RED}[error ]{NC} {msg}", file=sys.stderr)


def load_env() -> None:
    """Load .env from project root or backend, if present."""
    for env_path in (PROJECT_ROOT / ".env", PROJECT_ROOT / "backend" / ".env"):
        if env_path.exists():
            load_dotenv(env_path)
            return


def tokens(amount: int, config: PresaleConfig) -> str:
    return f"{amount / config.token_unit:,.4f}"


async def print_current_state(reader: PresaleReader, config: PresaleConfig) -> bool:
    presale = await reader.get_presale()
    if presale is None:
        err(f"Presale account {config.presale_address} does not exist")
        return False

    print()
    log("--- Current State ---")
    log(f"Owner:           {presale.owner}")
    log(f"Wallet:          {presale.wallet}")
    log(f"Status ICO:      {presale.is_open}")
    log(f"Finalize Status: {presale.is_finalized}")
    log(f"Rate:            {presale.rate}")
    log(f"Lamports Raised: {presale.lamports_raised}")
    log(f"Tokens Sold:     {presale.tokens_sold}")

    vault_balance = await reader.get_vault_balance()
    owner_balance = await reader.get_token_balance(config.owner)
    log(f"Vault balance:   {tokens(vault_balance, config)}")
    log(f"Owner balance:   {tokens(owner_balance, config)}")
    return True


def print_outcome(outcome: ReconcileOutcome, config: PresaleConfig) -> None:
    print()
    if not outcome.actions:
        ok("Presale already open and funded, nothing to do")
    for action in outcome.actions:
        suffix = f" ({tokens(action.amount, config)} tokens)" if action.amount else ""
        ok(f"{action.step.value} TX: {YELLOW}{action.signature}{NC}{suffix}")
    for message in outcome.warnings:
        warn(message)

    print()
    log("--- Final State ---")
    log(f"Status ICO:      {outcome.is_open}")
    log(f"Finalize Status: {outcome.is_finalized}")
    log(f"Vault balance:   {tokens(outcome.vault_balance, config)}")


async def run() -> int:
    load_env()
    settings = get_settings()
    configure_logging(settings)

    try:
        signer = signer_from_settings(settings)
    except (FileNotFoundError, PresaleError) as e:
        err(f"Could not load keypair: {e}")
        return 1

    config = PresaleConfig.from_settings(settings, owner=signer.pubkey())
    log(f"RPC:         {YELLOW}{config.rpc_url}{NC}")
    log(f"Wallet:      {signer.pubkey()}")
    log(f"Presale PDA: {config.presale_address}")
    log(f"Vault PDA:   {config.vault_address}")

    client = AsyncClient(config.rpc_url, commitment=Confirmed)
    try:
        reader = PresaleReader(client, config)
        orchestrator = TransactionOrchestrator(client, config, signer)
        workflow = ReconciliationWorkflow(reader, orchestrator)

        try:
            if not await print_current_state(reader, config):
                return 1
            outcome = await workflow.run()
        except ReconcileError as e:
            for action in e.completed:
                ok(f"{action.step.value} TX: {YELLOW}{action.signature}{NC}")
            err(f"Step '{e.step}' failed: {e.cause}")
            err("Re-run this script once the cause is fixed; completed steps are skipped.")
            return 1
        except PresaleError as e:
            err(str(e))
            return 1

        print_outcome(outcome, config)
        print()
        ok("Done!")
        return 0
    finally:
        await client.close()


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
