"""
Bitcoin and Harvy protocol constants.

Values here are defaults; the running service takes its limits from
SwapPolicy, which is built from settings at startup.
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

SATS_PER_BTC = 100_000_000

# Minimum amount paid to the seller per inscription.
# Must stay above STANDARD_DUST_LIMIT or the payment output is non-standard.
MIN_ORDINAL_PAYMENT_SATS = 600

MAX_BATCH_SIZE = 20

# Operator UTXOs at or below this value may carry a bought inscription
# (ord's default postage is 10,000 sats) and are never spent as funding.
MAX_INSCRIPTION_UTXO_SATS = 10_000

# Largest loss (purchase - current) accepted for a single request
MAX_LOSS_SATS = SATS_PER_BTC

MAX_SERVICE_FEE_USD = 100.0

DEFAULT_TAX_RATE = 0.30

# Last-resort guard in the finalizer against an absurd payout
MAX_TOTAL_OUTPUT_SATS = 10 * SATS_PER_BTC

# Sanity bounds for the BTC/USD reference price
MAX_BTC_PRICE_USD = 10_000_000.0

# Fee estimate used when selecting operator inputs for a single swap
SINGLE_SWAP_FEE_ESTIMATE_SATS = 1500

# Linear vsize model for batch swaps (vbytes).
# The per-input figure is deliberately conservative (non-segwit sized).
TX_OVERHEAD_VBYTES = 10
INPUT_VBYTES = 180
OUTPUT_VBYTES = 34
DEFAULT_FEE_RATE_SAT_VB = 5

# Default service fee tiers: (max tax savings in USD, percent). None = unbounded.
DEFAULT_FEE_TIERS: list[tuple[float | None, float]] = [
    (100.0, 5.0),
    (500.0, 7.0),
    (2000.0, 10.0),
    (10000.0, 12.0),
    (None, 15.0),
]
