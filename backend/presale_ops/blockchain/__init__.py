from presale_ops.blockchain.addresses import (
    DerivedAddress,
    PresaleAddresses,
    derive_address,
    derive_buyer_address,
    derive_presale_address,
    derive_token_account,
    derive_vault_address,
)
from presale_ops.blockchain.base import (
    BuyerRecord,
    PresaleRecord,
    SaleState,
    Signer,
    quote_tokens,
)

__all__ = [
    "DerivedAddress",
    "PresaleAddresses",
    "derive_address",
    "derive_buyer_address",
    "derive_presale_address",
    "derive_token_account",
    "derive_vault_address",
    "BuyerRecord",
    "PresaleRecord",
    "SaleState",
    "Signer",
    "quote_tokens",
]
