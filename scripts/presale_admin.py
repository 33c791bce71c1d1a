#!/usr/bin/env python3
"""
presale_admin.py: Owner actions on the presale program.

Usage:
    python scripts/presale_admin.py status
    python scripts/presale_admin.py open
    python scripts/presale_admin.py close
    python scripts/presale_admin.py finalize
    python scripts/presale_admin.py reopen-finalize
    python scripts/presale_admin.py set-rate <tokens_per_sol>
    python scripts/presale_admin.py set-entrance-fee <sol>
    python scripts/presale_admin.py set-max-buy <sol>
    python scripts/presale_admin.py fund-vault <tokens>

Rates and amounts are given in human units and converted to on-chain integers.
"""

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from presale_ops.blockchain.signer import signer_from_settings
from presale_ops.core.config import PresaleConfig, configure_logging, get_settings
from presale_ops.core.constants import LAMPORTS_PER_SOL, RATE_SCALE
from presale_ops.core.exceptions import PresaleError
from presale_ops.services.orchestrator import TransactionOrchestrator
from presale_ops.services.reader import PresaleReader

# ── Paths ──────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ── Colors ─────────────────────────────────────────────────────
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
CYAN = "\033[0;36m"
NC = "\033[0m"

ACTIONS = (
    "status",
    "open",
    "close",
    "finalize",
    "reopen-finalize",
    "set-rate",
    "set-entrance-fee",
    "set-max-buy",
    "fund-vault",
)
VALUE_ACTIONS = {"set-rate", "set-entrance-fee", "set-max-buy", "fund-vault"}


def log(msg: str) -> None:
    print(f"{CYAN}[admin]{NC} {msg}")


def ok(msg: str) -> None:
    print(f"{GREEN}[  ok  ]{NC} {msg}")


def err(msg: str) -> None:
    print(f"{RED}[error ]{NC} {msg}", file=sys.stderr)


def load_env() -> None:
    for env_path in (PROJECT_ROOT / ".env", PROJECT_ROOT / "backend" / ".env"):
        if env_path.exists():
            load_dotenv(env_path)
            return


def to_units(value: str, scale: int) -> int:
    """Convert a decimal string to an integer amount at ``scale`` (floor)."""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"not a number: {value}")
    if amount <= 0:
        raise ValueError("value must be positive")
    return int(amount * scale)


async def show_status(reader: PresaleReader, config: PresaleConfig) -> int:
    presale = await reader.get_presale()
    if presale is None:
        err(f"Presale account {config.presale_address} does not exist")
        return 1
    vault_balance = await reader.get_vault_balance()
    log(f"Status:        {YELLOW}{presale.status_label}{NC}")
    log(f"Rate:          {presale.rate / RATE_SCALE:g} tokens/SOL")
    log(f"Entrance fee:  {presale.entrance_fee / LAMPORTS_PER_SOL:g} SOL")
    log(f"Max buy:       {presale.max_buy / LAMPORTS_PER_SOL:g} SOL")
    log(f"Raised:        {presale.lamports_raised / LAMPORTS_PER_SOL:.4f} SOL "
        f"({presale.progress_pct:.1f}% of hard cap)")
    log(f"Soft/Hard cap: {presale.soft_cap / LAMPORTS_PER_SOL:.2f} / "
        f"{presale.hard_cap / LAMPORTS_PER_SOL:.2f} SOL")
    log(f"Tokens sold:   {presale.tokens_sold // config.token_unit:,}")
    log(f"Vault tokens:  {vault_balance // config.token_unit:,}")
    return 0


async def run(args: argparse.Namespace) -> int:
    load_env()
    settings = get_settings()
    configure_logging(settings)

    try:
        signer = signer_from_settings(settings)
    except (FileNotFoundError, PresaleError) as e:
        err(f"Could not load keypair: {e}")
        return 1

    config = PresaleConfig.from_settings(settings, owner=signer.pubkey())
    log(f"Owner:       {signer.pubkey()}")
    log(f"Presale PDA: {config.presale_address}")

    client = AsyncClient(config.rpc_url, commitment=Confirmed)
    try:
        reader = PresaleReader(client, config)
        if args.action == "status":
            return await show_status(reader, config)

        orchestrator = TransactionOrchestrator(client, config, signer)
        intents = {
            "open": orchestrator.open_sale,
            "close": orchestrator.close_sale,
            "finalize": orchestrator.finalize_sale,
            "reopen-finalize": orchestrator.reopen_finalize_sale,
        }
        if args.action in intents:
            sig = await intents[args.action]()
        elif args.action == "set-rate":
            sig = await orchestrator.set_rate(to_units(args.value, RATE_SCALE))
        elif args.action == "set-entrance-fee":
            sig = await orchestrator.set_entrance_fee(to_units(args.value, LAMPORTS_PER_SOL))
        elif args.action == "set-max-buy":
            sig = await orchestrator.set_max_buy(to_units(args.value, LAMPORTS_PER_SOL))
        else:
            sig = await orchestrator.fund_vault(to_units(args.value, config.token_unit))

        ok(f"{args.action} TX: {YELLOW}{sig}{NC}")
        return 0
    except (PresaleError, ValueError) as e:
        err(str(e))
        return 1
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Owner actions on the presale program")
    parser.add_argument("action", choices=ACTIONS, help="Action to perform")
    parser.add_argument("value", nargs="?", help="Value for set-* and fund-vault actions")
    args = parser.parse_args()

    if args.action in VALUE_ACTIONS and args.value is None:
        parser.error(f"{args.action} requires a value")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
