"""
Operator UTXO selection.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from hvcore.errors import InsufficientFunds, InvalidRequest
from hvcore.models import UnspentOutput


@dataclass
class SelectionResult:
    selected: list[UnspentOutput]
    total_sats: int
    change_sats: int


def select_utxos(
    utxos: Iterable[UnspentOutput], target_sats: int, fee_estimate_sats: int
) -> SelectionResult:
    """
    Select UTXOs to cover target + fee.

    Uses a smallest-first greedy strategy so the operator's small outputs get
    consolidated. Ties are broken by outpoint to keep the result deterministic.
    A zero requirement selects nothing.
    """
    if target_sats < 0 or fee_estimate_sats < 0:
        raise InvalidRequest(
            f"Target and fee must be non-negative (target={target_sats}, fee={fee_estimate_sats})"
        )

    required = target_sats + fee_estimate_sats
    ordered = sorted(utxos, key=lambda u: (u.value, u.txid, u.vout))

    selected: list[UnspentOutput] = []
    total = 0
    for utxo in ordered:
        if total >= required:
            break
        selected.append(utxo)
        total += utxo.value

    if total < required:
        available = sum(u.value for u in ordered)
        raise InsufficientFunds(
            f"Insufficient operator funds: need {required} sats, have {available}",
            details={"required_sats": required, "available_sats": available},
        )

    return SelectionResult(selected=selected, total_sats=total, change_sats=total - required)
