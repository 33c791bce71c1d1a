"""
Program-derived address helpers for the presale program.

Every account the program expects is derived from a seed tag plus one or more
32-byte identities, so the same inputs always yield the same address.
"""

from dataclasses import dataclass
from typing import Sequence, Union

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from presale_ops.core.constants import (
    BUYER_SEED,
    PRESALE_SEED,
    PUBKEY_LENGTH,
    VAULT_SEED,
)
from presale_ops.core.exceptions import InvalidInput

IdentityLike = Union[Pubkey, bytes, str]


@dataclass(frozen=True)
class DerivedAddress:
    """A program-derived address together with the bump that produced it."""
    address: Pubkey
    bump: int

    def as_dict(self) -> dict:
        return {"address": str(self.address), "bump": self.bump}


def to_pubkey(value: IdentityLike, field: str = "identity") -> Pubkey:
    """Coerce a Pubkey, raw 32 bytes or base58 string into a Pubkey."""
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) != PUBKEY_LENGTH:
            raise InvalidInput(
                f"{field} must be {PUBKEY_LENGTH} bytes, got {len(value)}"
            )
        return Pubkey.from_bytes(bytes(value))
    if isinstance(value, str):
        try:
            return Pubkey.from_string(value.strip())
        except ValueError as e:
            raise InvalidInput(f"{field} is not a valid public key: {e}") from e
    raise InvalidInput(f"{field} has unsupported type {type(value).__name__}")


def derive_address(
    tag: bytes,
    identities: Sequence[IdentityLike],
    program_id: IdentityLike,
) -> DerivedAddress:
    """Derive the address for ``tag`` followed by ``identities`` in order."""
    program = to_pubkey(program_id, "program_id")
    seeds = [tag] + [bytes(to_pubkey(identity)) for identity in identities]
    pda, bump = Pubkey.find_program_address(seeds, program)
    return DerivedAddress(pda, bump)


def derive_presale_address(
    program_id: IdentityLike, owner: IdentityLike, token_mint: IdentityLike
) -> DerivedAddress:
    return derive_address(PRESALE_SEED, [owner, token_mint], program_id)


def derive_vault_address(program_id: IdentityLike, presale: IdentityLike) -> DerivedAddress:
    return derive_address(VAULT_SEED, [presale], program_id)


def derive_buyer_address(
    program_id: IdentityLike, presale: IdentityLike, buyer: IdentityLike
) -> DerivedAddress:
    return derive_address(BUYER_SEED, [presale, buyer], program_id)


def derive_token_account(owner: IdentityLike, token_mint: IdentityLike) -> Pubkey:
    """Associated token account of ``owner`` for ``token_mint``."""
    return get_associated_token_address(
        to_pubkey(owner, "owner"), to_pubkey(token_mint, "token_mint")
    )


@dataclass(frozen=True)
class PresaleAddresses:
    """Addresses fixed for one (owner, mint) pair, computed once at start-up."""
    program_id: Pubkey
    owner: Pubkey
    token_mint: Pubkey
    presale: DerivedAddress
    vault: DerivedAddress

    @classmethod
    def derive(
        cls,
        program_id: IdentityLike,
        owner: IdentityLike,
        token_mint: IdentityLike,
    ) -> "PresaleAddresses":
        program = to_pubkey(program_id, "program_id")
        owner_key = to_pubkey(owner, "owner")
        mint = to_pubkey(token_mint, "token_mint")
        presale = derive_presale_address(program, owner_key, mint)
        vault = derive_vault_address(program, presale.address)
        return cls(program, owner_key, mint, presale, vault)

    def buyer(self, buyer: IdentityLike) -> DerivedAddress:
        return derive_buyer_address(self.program_id, self.presale.address, buyer)

    def token_account(self, owner: IdentityLike) -> Pubkey:
        return derive_token_account(owner, self.token_mint)

    def as_dict(self) -> dict:
        return {
            "program_id": str(self.program_id),
            "owner": str(self.owner),
            "token_mint": str(self.token_mint),
            "presale": self.presale.as_dict(),
            "vault": self.vault.as_dict(),
        }
