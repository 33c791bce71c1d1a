import json
from pathlib import Path
from typing import List, Union

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from presale_ops.blockchain.base import Signer
from presale_ops.core.exceptions import InvalidInput


def load_keypair(path: Union[str, Path]) -> Keypair:
    """Load a solana-keygen JSON keypair file (array of 64 secret key bytes)."""
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Keypair file not found: {path}")
    try:
        secret = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidInput(f"Keypair file {path} is not valid JSON: {e}") from e
    if not isinstance(secret, list) or len(secret) != 64:
        raise InvalidInput(f"Keypair file {path} must hold a JSON array of 64 bytes")
    try:
        return Keypair.from_bytes(bytes(secret))
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Keypair file {path} does not hold a valid keypair: {e}") from e


def keypair_from_base58(private_key: str) -> Keypair:
    """Decode a base58-encoded 64-byte secret key."""
    try:
        secret = base58.b58decode(private_key.strip())
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise InvalidInput(f"Invalid base58 private key: {e}") from e


class KeypairSigner(Signer):
    """Signer backed by a local keypair, used by the operator script."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        return cls(load_keypair(path))

    @classmethod
    def from_base58(cls, private_key: str) -> "KeypairSigner":
        return cls(keypair_from_base58(private_key))

    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        tx.partial_sign([self._keypair], tx.message.recent_blockhash)
        return tx

    async def sign_all_transactions(self, txs: List[Transaction]) -> List[Transaction]:
        for tx in txs:
            tx.partial_sign([self._keypair], tx.message.recent_blockhash)
        return txs


def signer_from_settings(settings) -> KeypairSigner:
    """Owner signer from OWNER_PRIVATE_KEY, falling back to KEYPAIR_PATH."""
    if settings.owner_private_key:
        return KeypairSigner.from_base58(settings.owner_private_key)
    return KeypairSigner.from_file(settings.keypair_path)
