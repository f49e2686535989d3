"""
hvcore - Core library for Harvy components

Provides shared models, constants, fee math and the error taxonomy.
"""

__version__ = "0.3.0"

from hvcore.constants import (
    MAX_BATCH_SIZE,
    MIN_ORDINAL_PAYMENT_SATS,
    SATS_PER_BTC,
    STANDARD_DUST_LIMIT,
)
from hvcore.errors import (
    BatchTooLarge,
    BelowDustLimit,
    BroadcastRejected,
    ConfigurationError,
    FeeExceedsLimit,
    FinalizationError,
    InscriptionNotFound,
    InsufficientFunds,
    IntentMismatch,
    InvalidAddress,
    InvalidRequest,
    InvalidTrade,
    LimitExceeded,
    NoLossToHarvest,
    PsbtSanityError,
    SignatureValidationFailed,
    SwapError,
    UTXOSourceError,
)
from hvcore.fees import quote_swap, sats_to_usd, service_fee, usd_to_sats
from hvcore.models import (
    FeeQuote,
    FeeTier,
    InscriptionLocator,
    NetworkType,
    OrdinalSale,
    SwapIntent,
    SwapPolicy,
    SwapQuote,
    UnspentOutput,
)

__all__ = [
    "BatchTooLarge",
    "BelowDustLimit",
    "BroadcastRejected",
    "ConfigurationError",
    "FeeExceedsLimit",
    "FeeQuote",
    "FeeTier",
    "FinalizationError",
    "InscriptionLocator",
    "InscriptionNotFound",
    "InsufficientFunds",
    "IntentMismatch",
    "InvalidAddress",
    "InvalidRequest",
    "InvalidTrade",
    "LimitExceeded",
    "MAX_BATCH_SIZE",
    "MIN_ORDINAL_PAYMENT_SATS",
    "NetworkType",
    "NoLossToHarvest",
    "OrdinalSale",
    "PsbtSanityError",
    "SATS_PER_BTC",
    "STANDARD_DUST_LIMIT",
    "SignatureValidationFailed",
    "SwapError",
    "SwapIntent",
    "SwapPolicy",
    "SwapQuote",
    "UTXOSourceError",
    "UnspentOutput",
    "quote_swap",
    "sats_to_usd",
    "service_fee",
    "usd_to_sats",
]
