"""
Configuration for the Harvy buyer service.

Variable names match the deployed environment (HARVY_WALLET_ADDRESS,
FEE_TIER_1_MAX, ...); matching is case-insensitive.
"""

from __future__ import annotations

from hvcore.constants import (
    DEFAULT_FEE_RATE_SAT_VB,
    DEFAULT_TAX_RATE,
    MAX_BATCH_SIZE,
    MAX_INSCRIPTION_UTXO_SATS,
    MAX_LOSS_SATS,
    MAX_SERVICE_FEE_USD,
    MAX_TOTAL_OUTPUT_SATS,
    MIN_ORDINAL_PAYMENT_SATS,
    SINGLE_SWAP_FEE_ESTIMATE_SATS,
    STANDARD_DUST_LIMIT,
)
from hvcore.errors import ConfigurationError
from hvcore.models import FeeTier, NetworkType, SwapPolicy
from hvwallet.wallet.keys import OperatorKey
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Operator wallet
    harvy_wallet_address: str | None = None
    harvy_wallet_private_key: SecretStr | None = None
    bitcoin_network: NetworkType = NetworkType.TESTNET

    mempool_api_url: str = "https://mempool.space/testnet/api"
    request_timeout: float = Field(default=30.0, gt=0)

    # HTTP server
    http_host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"

    # Swap limits
    min_ordinal_payment_sats: int = Field(default=MIN_ORDINAL_PAYMENT_SATS, ge=0)
    max_service_fee_usd: float = Field(default=MAX_SERVICE_FEE_USD, ge=0)
    assumed_tax_rate: float = Field(default=DEFAULT_TAX_RATE, ge=0, le=1)
    max_loss_sats: int = Field(default=MAX_LOSS_SATS, ge=1)
    max_batch_size: int = Field(default=MAX_BATCH_SIZE, ge=1)
    max_inscription_utxo_sats: int = Field(default=MAX_INSCRIPTION_UTXO_SATS, ge=0)
    dust_limit_sats: int = Field(default=STANDARD_DUST_LIMIT, ge=0)
    max_total_output_sats: int = Field(default=MAX_TOTAL_OUTPUT_SATS, ge=1)
    single_swap_fee_estimate_sats: int = Field(default=SINGLE_SWAP_FEE_ESTIMATE_SATS, ge=0)
    fee_rate_sat_vb: int = Field(default=DEFAULT_FEE_RATE_SAT_VB, ge=1)

    # Service fee tiers; tier 5 is unbounded
    fee_tier_1_max: float = 100.0
    fee_tier_1_percent: float = 5.0
    fee_tier_2_max: float = 500.0
    fee_tier_2_percent: float = 7.0
    fee_tier_3_max: float = 2000.0
    fee_tier_3_percent: float = 10.0
    fee_tier_4_max: float = 10000.0
    fee_tier_4_percent: float = 12.0
    fee_tier_5_percent: float = 15.0

    # Swap requests allowed per seller (or client IP) per hour
    rate_limit_per_hour: int = Field(default=10, ge=1)

    # Refuse to finalize PSBTs that do not come with their build receipt
    harvy_require_receipt: bool = False

    def fee_tiers(self) -> tuple[FeeTier, ...]:
        return (
            FeeTier(max_usd=self.fee_tier_1_max, percent=self.fee_tier_1_percent),
            FeeTier(max_usd=self.fee_tier_2_max, percent=self.fee_tier_2_percent),
            FeeTier(max_usd=self.fee_tier_3_max, percent=self.fee_tier_3_percent),
            FeeTier(max_usd=self.fee_tier_4_max, percent=self.fee_tier_4_percent),
            FeeTier(max_usd=None, percent=self.fee_tier_5_percent),
        )

    def policy(self) -> SwapPolicy:
        """Build the immutable swap policy. Inconsistent tiers are fatal."""
        try:
            return SwapPolicy(
                fee_tiers=self.fee_tiers(),
                dust_limit_sats=self.dust_limit_sats,
                min_payment_sats=self.min_ordinal_payment_sats,
                max_batch_size=self.max_batch_size,
                max_inscription_utxo_sats=self.max_inscription_utxo_sats,
                max_loss_sats=self.max_loss_sats,
                max_service_fee_usd=self.max_service_fee_usd,
                default_tax_rate=self.assumed_tax_rate,
                single_fee_estimate_sats=self.single_swap_fee_estimate_sats,
                fee_rate_sat_vb=self.fee_rate_sat_vb,
                max_total_output_sats=self.max_total_output_sats,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid swap policy: {e}") from e

    def operator_key(self) -> OperatorKey | None:
        """
        Load the operator key, or None if the wallet is not configured.

        If HARVY_WALLET_ADDRESS is set it must be the P2WPKH address of the key.
        """
        if self.harvy_wallet_private_key is None:
            return None
        key = OperatorKey.from_wif(
            self.harvy_wallet_private_key.get_secret_value(), self.bitcoin_network
        )
        if self.harvy_wallet_address and self.harvy_wallet_address != key.address:
            raise ConfigurationError(
                "HARVY_WALLET_ADDRESS does not match the address of HARVY_WALLET_PRIVATE_KEY"
            )
        return key

    def explorer_url(self, txid: str) -> str:
        if self.bitcoin_network == NetworkType.MAINNET:
            return f"https://mempool.space/tx/{txid}"
        return f"https://mempool.space/{self.bitcoin_network.value}/tx/{txid}"


def get_settings() -> Settings:
    return Settings()
