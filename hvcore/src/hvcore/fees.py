"""
Price and service fee calculation.

Pure functions; no I/O. Monetary rounding is half-up, to cents for USD and
to whole satoshis for BTC amounts.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from hvcore.constants import DEFAULT_FEE_TIERS, SATS_PER_BTC
from hvcore.errors import InvalidRequest
from hvcore.models import FeeQuote, FeeTier, SwapPolicy, SwapQuote

CENT = Decimal("0.01")

DEFAULT_TIERS: tuple[FeeTier, ...] = tuple(
    FeeTier(max_usd=m, percent=p) for m, p in DEFAULT_FEE_TIERS
)


def _round_usd(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _check_price(btc_price_usd: float) -> Decimal:
    if not math.isfinite(btc_price_usd) or btc_price_usd <= 0:
        raise InvalidRequest(f"BTC price must be positive, got {btc_price_usd}")
    return Decimal(str(btc_price_usd))


def service_fee(tax_savings_usd: float, tiers: Sequence[FeeTier] = DEFAULT_TIERS) -> FeeQuote:
    """
    Calculate the service fee for a given tax saving.

    The first tier whose threshold is >= tax_savings_usd wins. A non-positive
    input lands in tier 1; callers must reject non-positive losses first.
    """
    if not math.isfinite(tax_savings_usd):
        raise InvalidRequest(f"Tax savings must be finite, got {tax_savings_usd}")
    savings = Decimal(str(tax_savings_usd))
    for index, tier in enumerate(tiers):
        if tier.max_usd is None or savings <= Decimal(str(tier.max_usd)):
            fee = savings * Decimal(str(tier.percent)) / 100
            return FeeQuote(
                fee_usd=_round_usd(fee),
                fee_percent=tier.percent,
                tier=index + 1,
                tier_max=tier.max_usd,
            )
    raise ValueError("Fee tiers do not cover the input; last tier must be unbounded")


def usd_to_sats(usd: float, btc_price_usd: float) -> int:
    price = _check_price(btc_price_usd)
    if not math.isfinite(usd):
        raise InvalidRequest(f"USD amount must be finite, got {usd}")
    sats = Decimal(str(usd)) / price * SATS_PER_BTC
    return int(sats.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def sats_to_usd(sats: int, btc_price_usd: float) -> float:
    price = _check_price(btc_price_usd)
    return _round_usd(Decimal(sats) / SATS_PER_BTC * price)


def quote_swap(
    purchase_price_sats: int,
    current_price_sats: int,
    btc_price_usd: float,
    tax_rate: float,
    policy: SwapPolicy,
) -> SwapQuote:
    """
    Compute loss, tax savings and service fee for a sale.

    Does not enforce limits; the builders do that so they can pick the error.
    """
    loss_sats = purchase_price_sats - current_price_sats
    loss_usd = sats_to_usd(loss_sats, btc_price_usd)
    savings_usd = _round_usd(Decimal(str(loss_usd)) * Decimal(str(tax_rate)))
    fee = service_fee(savings_usd, policy.fee_tiers)
    fee_sats = max(usd_to_sats(fee.fee_usd, btc_price_usd), 0)
    return SwapQuote(
        purchase_price_sats=purchase_price_sats,
        current_price_sats=current_price_sats,
        tax_loss_sats=loss_sats,
        tax_loss_usd=loss_usd,
        tax_rate=tax_rate,
        tax_savings_usd=savings_usd,
        fee=fee,
        service_fee_sats=fee_sats,
    )
