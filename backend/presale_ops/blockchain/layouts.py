"""
Binary layouts of the presale program's accounts and instructions.

Anchor prefixes every account and instruction with an 8-byte discriminator:
the first 8 bytes of SHA256("<namespace>:<Name>"). Integers are little-endian.
"""

import hashlib
import struct

from solders.pubkey import Pubkey

from presale_ops.blockchain.base import BuyerRecord, PresaleRecord
from presale_ops.core.constants import ACCOUNT_NAMESPACE, INSTRUCTION_NAMESPACE, U64_MAX
from presale_ops.core.exceptions import InvalidInput

DISCRIMINATOR_SIZE = 8

# discriminator + 4 pubkeys + 7 u64 + 2 bool + bump
PRESALE_ACCOUNT_SIZE = 8 + 32 * 4 + 8 * 7 + 1 + 1 + 1
# discriminator + 2 pubkeys + 2 u64 + bump
BUYER_ACCOUNT_SIZE = 8 + 32 * 2 + 8 * 2 + 1

# SPL token account: mint(32) + owner(32) + amount(u64) + ...
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
TOKEN_ACCOUNT_MIN_SIZE = 72


class LayoutError(ValueError):
    """Account data does not match the expected layout."""


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"{ACCOUNT_NAMESPACE}:{name}".encode()).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"{INSTRUCTION_NAMESPACE}:{name}".encode()).digest()[:8]


PRESALE_DISCRIMINATOR = account_discriminator("Presale")
BUYER_STATE_DISCRIMINATOR = account_discriminator("BuyerState")


def _check_header(data: bytes, discriminator: bytes, size: int, name: str) -> None:
    if len(data) < size:
        raise LayoutError(f"{name} account too short: {len(data)} < {size} bytes")
    if data[:DISCRIMINATOR_SIZE] != discriminator:
        raise LayoutError(f"{name} account discriminator mismatch")


def decode_presale(data: bytes) -> PresaleRecord:
    """Parse a `Presale` account."""
    data = bytes(data)
    _check_header(data, PRESALE_DISCRIMINATOR, PRESALE_ACCOUNT_SIZE, "Presale")

    offset = DISCRIMINATOR_SIZE
    owner = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    token_mint = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    token_vault = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    wallet = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    (
        rate,
        entrance_fee,
        max_buy,
        soft_cap,
        hard_cap,
        lamports_raised,
        tokens_sold,
    ) = struct.unpack_from("<7Q", data, offset)
    offset += 8 * 7
    status_ico = data[offset]
    offset += 1
    finalize_status = data[offset]
    offset += 1
    bump = data[offset]

    return PresaleRecord(
        owner=owner,
        token_mint=token_mint,
        token_vault=token_vault,
        wallet=wallet,
        rate=rate,
        entrance_fee=entrance_fee,
        max_buy=max_buy,
        soft_cap=soft_cap,
        hard_cap=hard_cap,
        lamports_raised=lamports_raised,
        tokens_sold=tokens_sold,
        is_open=status_ico == 1,
        is_finalized=finalize_status == 1,
        bump=bump,
    )


def encode_presale(record: PresaleRecord) -> bytes:
    """Serialize a record back to account bytes (fixtures and local tooling)."""
    data = bytearray(PRESALE_DISCRIMINATOR)
    for key in (record.owner, record.token_mint, record.token_vault, record.wallet):
        data.extend(bytes(key))
    data.extend(
        struct.pack(
            "<7Q",
            record.rate,
            record.entrance_fee,
            record.max_buy,
            record.soft_cap,
            record.hard_cap,
            record.lamports_raised,
            record.tokens_sold,
        )
    )
    data.append(1 if record.is_open else 0)
    data.append(1 if record.is_finalized else 0)
    data.append(record.bump)
    return bytes(data)


def decode_buyer(data: bytes) -> BuyerRecord:
    """Parse a `BuyerState` account."""
    data = bytes(data)
    _check_header(data, BUYER_STATE_DISCRIMINATOR, BUYER_ACCOUNT_SIZE, "BuyerState")

    offset = DISCRIMINATOR_SIZE
    presale = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    buyer = Pubkey.from_bytes(data[offset : offset + 32])
    offset += 32
    contributed, purchased = struct.unpack_from("<2Q", data, offset)
    offset += 16
    bump = data[offset]

    return BuyerRecord(
        presale=presale,
        buyer=buyer,
        contributed_lamports=contributed,
        tokens_purchased=purchased,
        bump=bump,
    )


def encode_buyer(record: BuyerRecord) -> bytes:
    data = bytearray(BUYER_STATE_DISCRIMINATOR)
    data.extend(bytes(record.presale))
    data.extend(bytes(record.buyer))
    data.extend(struct.pack("<2Q", record.contributed_lamports, record.tokens_purchased))
    data.append(record.bump)
    return bytes(data)


def decode_token_amount(data: bytes) -> int:
    """Read the `amount` field of an SPL token account."""
    data = bytes(data)
    if len(data) < TOKEN_ACCOUNT_MIN_SIZE:
        raise LayoutError(f"Token account too short: {len(data)} bytes")
    return struct.unpack_from("<Q", data, TOKEN_ACCOUNT_AMOUNT_OFFSET)[0]


def check_u64(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise InvalidInput(f"{field} must be within u64 range")
    return value


def encode_instruction(name: str, *args: int) -> bytes:
    """Instruction data: discriminator followed by u64 arguments."""
    data = bytearray(instruction_discriminator(name))
    for arg in args:
        data.extend(struct.pack("<Q", arg))
    return bytes(data)
