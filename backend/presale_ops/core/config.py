from dataclasses import dataclass
from typing import Dict, List, Optional
import json
import logging

from pydantic_settings import BaseSettings
from solders.pubkey import Pubkey

from presale_ops.blockchain.addresses import PresaleAddresses


class Settings(BaseSettings):
    # Application
    app_name: str = "Presale Operations API"
    debug: bool = False
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"

    # Solana Configuration
    solana_rpc_url: str = "https://api.devnet.solana.com"
    presale_program_id: str = "2aBRNteWaNGAh3R79RWengDwzn8SnGVtYJeX4Wru6ejK"
    presale_token_mint: str = "4nVqegSXf5DsAAiUMVYHQ2NeMotcmGrzqRaD7HZF1cbM"
    # Presale owner: first seed of the presale PDA, receives finalize proceeds
    presale_owner_wallet: str = "DNNwwtuCvxdJwfDtSLbGixeQ2Hxa56VGiNqFJn1Kru2n"
    token_decimals: int = 9

    # Polling / confirmation
    poll_interval_seconds: float = 30.0
    confirm_timeout_seconds: float = 60.0
    error_message_max_length: int = 120
    # Buyers refreshed on every poll; least recently queried are dropped first
    max_tracked_buyers: int = 256

    # Reconciliation: one million whole tokens per funding transfer
    funding_ceiling_tokens: int = 1_000_000
    # JSON array of 64 secret key bytes (solana-keygen format)
    keypair_path: str = "~/.config/solana/id.json"
    # Base58 encoded owner secret key; takes precedence over keypair_path
    owner_private_key: str = ""

    # RPC relay upstreams
    rpc_upstream_mainnet: str = "https://build.onbeam.com/rpc/mainnet"
    rpc_upstream_testnet: str = "https://build.onbeam.com/rpc/testnet"

    # CORS
    cors_origins: str = '["http://localhost:3000","http://localhost:8080"]'

    @property
    def cors_origins_list(self) -> List[str]:
        return json.loads(self.cors_origins)

    @property
    def rpc_upstreams(self) -> Dict[str, str]:
        return {
            "mainnet": self.rpc_upstream_mainnet,
            "testnet": self.rpc_upstream_testnet,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


def get_settings() -> Settings:
    """Build settings from the environment. Called once per process entrypoint."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass(frozen=True)
class PresaleConfig:
    """
    Immutable view of one presale: parsed identities, derived addresses and
    the numeric knobs the services need. Built once at process start and
    passed explicitly to the reader, orchestrator and reconciliation workflow.
    """
    rpc_url: str
    addresses: PresaleAddresses
    token_decimals: int = 9
    poll_interval_seconds: float = 30.0
    confirm_timeout_seconds: float = 60.0
    error_message_max_length: int = 120
    funding_ceiling_tokens: int = 1_000_000
    max_tracked_buyers: int = 256

    @classmethod
    def from_settings(
        cls, settings: Settings, owner: Optional[Pubkey] = None
    ) -> "PresaleConfig":
        addresses = PresaleAddresses.derive(
            settings.presale_program_id,
            owner if owner is not None else settings.presale_owner_wallet,
            settings.presale_token_mint,
        )
        return cls(
            rpc_url=settings.solana_rpc_url,
            addresses=addresses,
            token_decimals=settings.token_decimals,
            poll_interval_seconds=settings.poll_interval_seconds,
            confirm_timeout_seconds=settings.confirm_timeout_seconds,
            error_message_max_length=settings.error_message_max_length,
            funding_ceiling_tokens=settings.funding_ceiling_tokens,
            max_tracked_buyers=settings.max_tracked_buyers,
        )

    @property
    def program_id(self) -> Pubkey:
        return self.addresses.program_id

    @property
    def owner(self) -> Pubkey:
        return self.addresses.owner

    @property
    def token_mint(self) -> Pubkey:
        return self.addresses.token_mint

    @property
    def presale_address(self) -> Pubkey:
        return self.addresses.presale.address

    @property
    def vault_address(self) -> Pubkey:
        return self.addresses.vault.address

    @property
    def token_unit(self) -> int:
        return 10**self.token_decimals

    @property
    def funding_ceiling(self) -> int:
        """Funding ceiling in token base units."""
        return self.funding_ceiling_tokens * self.token_unit
