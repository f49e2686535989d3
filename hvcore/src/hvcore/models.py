"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hvcore.constants import (
    DEFAULT_FEE_RATE_SAT_VB,
    DEFAULT_FEE_TIERS,
    DEFAULT_TAX_RATE,
    INPUT_VBYTES,
    MAX_BATCH_SIZE,
    MAX_INSCRIPTION_UTXO_SATS,
    MAX_LOSS_SATS,
    MAX_SERVICE_FEE_USD,
    MAX_TOTAL_OUTPUT_SATS,
    MIN_ORDINAL_PAYMENT_SATS,
    OUTPUT_VBYTES,
    SINGLE_SWAP_FEE_ESTIMATE_SATS,
    STANDARD_DUST_LIMIT,
    TX_OVERHEAD_VBYTES,
)
from hvcore.errors import InvalidRequest

TXID_RE = re.compile(r"^[0-9a-f]{64}\Z")
VOUT_RE = re.compile(r"^[0-9]{1,10}\Z")


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def hrp(self) -> str:
        """Bech32 human-readable part for this network."""
        return {
            NetworkType.MAINNET: "bc",
            NetworkType.TESTNET: "tb",
            NetworkType.SIGNET: "tb",
            NetworkType.REGTEST: "bcrt",
        }[self]

    @property
    def wif_prefix(self) -> int:
        return 0x80 if self == NetworkType.MAINNET else 0xEF


class UnspentOutput(BaseModel):
    """
    A spendable output, optionally carrying the raw bytes of its transaction.

    Identity is (txid, vout); value and raw_tx do not participate.
    """

    model_config = ConfigDict(frozen=True)

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    vout: int = Field(..., ge=0)
    value: int = Field(..., ge=0)
    raw_tx: bytes | None = Field(default=None, repr=False)

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnspentOutput):
            return NotImplemented
        return self.outpoint == other.outpoint

    def __hash__(self) -> int:
        return hash(self.outpoint)


class InscriptionLocator(BaseModel):
    """Coordinates of the UTXO named by an inscription id (``<txid>i<index>``)."""

    model_config = ConfigDict(frozen=True)

    txid: str
    vout: int

    @classmethod
    def parse(cls, inscription_id: str) -> InscriptionLocator:
        parts = inscription_id.split("i")
        if len(parts) != 2:
            raise InvalidRequest(f"Invalid inscription ID format: {inscription_id}")
        txid, index = parts
        if not TXID_RE.match(txid):
            raise InvalidRequest(f"Invalid txid in inscription ID: {inscription_id}")
        if not VOUT_RE.match(index):
            raise InvalidRequest(f"Invalid vout in inscription ID: {inscription_id}")
        return cls(txid=txid, vout=int(index))

    @property
    def inscription_id(self) -> str:
        return f"{self.txid}i{self.vout}"

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


class OrdinalSale(BaseModel):
    """One inscription offered for sale, with its cost basis and current value."""

    inscription_id: str
    purchase_price_sats: int
    current_price_sats: int = 0


class SwapIntent(BaseModel):
    """What the seller wants to sell. Everything downstream is derived from this."""

    ordinals: list[OrdinalSale]
    seller_address: str
    btc_price_usd: float
    tax_rate: float | None = None

    @property
    def total_purchase_sats(self) -> int:
        return sum(o.purchase_price_sats for o in self.ordinals)

    @property
    def total_current_sats(self) -> int:
        return sum(o.current_price_sats for o in self.ordinals)


class FeeTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_usd: float | None  # None = unbounded
    percent: float = Field(..., ge=0, le=100)


class FeeQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    fee_usd: float
    fee_percent: float
    tier: int  # 1-based
    tier_max: float | None


class SwapQuote(BaseModel):
    """Tax and fee figures for one swap request."""

    model_config = ConfigDict(frozen=True)

    purchase_price_sats: int
    current_price_sats: int
    tax_loss_sats: int
    tax_loss_usd: float
    tax_rate: float
    tax_savings_usd: float
    fee: FeeQuote
    service_fee_sats: int

    @property
    def seller_net_benefit_usd(self) -> float:
        return round(self.tax_savings_usd - self.fee.fee_usd, 2)


class SwapPolicy(BaseModel):
    """
    Immutable swap limits and fee schedule.

    Built once at startup and handed to the calculator and builders.
    """

    model_config = ConfigDict(frozen=True)

    fee_tiers: tuple[FeeTier, ...] = tuple(
        FeeTier(max_usd=m, percent=p) for m, p in DEFAULT_FEE_TIERS
    )
    dust_limit_sats: int = Field(default=STANDARD_DUST_LIMIT, ge=0)
    min_payment_sats: int = Field(default=MIN_ORDINAL_PAYMENT_SATS, ge=0)
    max_batch_size: int = Field(default=MAX_BATCH_SIZE, ge=1)
    max_inscription_utxo_sats: int = Field(default=MAX_INSCRIPTION_UTXO_SATS, ge=0)
    max_loss_sats: int = Field(default=MAX_LOSS_SATS, ge=1)
    max_service_fee_usd: float = Field(default=MAX_SERVICE_FEE_USD, ge=0)
    default_tax_rate: float = Field(default=DEFAULT_TAX_RATE, ge=0, le=1)
    single_fee_estimate_sats: int = Field(default=SINGLE_SWAP_FEE_ESTIMATE_SATS, ge=0)
    fee_rate_sat_vb: int = Field(default=DEFAULT_FEE_RATE_SAT_VB, ge=1)
    tx_overhead_vbytes: int = TX_OVERHEAD_VBYTES
    input_vbytes: int = INPUT_VBYTES
    output_vbytes: int = OUTPUT_VBYTES
    max_total_output_sats: int = Field(default=MAX_TOTAL_OUTPUT_SATS, ge=1)

    @model_validator(mode="after")
    def check_tiers(self) -> SwapPolicy:
        if not self.fee_tiers:
            raise ValueError("At least one fee tier is required")
        if self.fee_tiers[-1].max_usd is not None:
            raise ValueError("Last fee tier must be unbounded")
        bounded = [t.max_usd for t in self.fee_tiers[:-1]]
        if any(m is None for m in bounded):
            raise ValueError("Only the last fee tier may be unbounded")
        if any(a >= b for a, b in zip(bounded, bounded[1:])):  # type: ignore[operator]
            raise ValueError("Fee tier thresholds must be strictly ascending")
        percents = [t.percent for t in self.fee_tiers]
        if any(a > b for a, b in zip(percents, percents[1:])):
            raise ValueError("Fee tier percents must not decrease")
        return self

    def estimate_fee(self, input_count: int, output_count: int) -> int:
        """Linear fee model: (overhead + per-input + per-output vbytes) x rate."""
        vsize = (
            self.tx_overhead_vbytes
            + self.input_vbytes * input_count
            + self.output_vbytes * output_count
        )
        return vsize * self.fee_rate_sat_vb
