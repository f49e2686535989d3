"""
Error taxonomy for swap construction and broadcast.

Every failure surfaced to a caller is a SwapError with a stable ``code``.
The HTTP layer maps ``http_status`` directly; nothing else inspects messages.
"""

from __future__ import annotations

from typing import Any


class SwapError(Exception):
    """Base class for all swap failures."""

    code = "SWAP_ERROR"
    http_status = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class InvalidRequest(SwapError):
    """Malformed or out-of-range request input."""

    code = "INVALID_REQUEST"
    http_status = 400


class InvalidAddress(SwapError):
    code = "INVALID_ADDRESS"
    http_status = 400


class InvalidTrade(SwapError):
    """The position has a gain (or no change), not a loss."""

    code = "INVALID_TRADE"
    http_status = 400


class LimitExceeded(SwapError):
    code = "LIMIT_EXCEEDED"
    http_status = 400


class FeeExceedsLimit(LimitExceeded):
    code = "FEE_EXCEEDS_LIMIT"


class BelowDustLimit(SwapError):
    code = "BELOW_DUST_LIMIT"
    http_status = 400


class InsufficientFunds(SwapError):
    """Operator wallet cannot cover the required amount."""

    code = "INSUFFICIENT_FUNDS"
    http_status = 503


class InscriptionNotFound(SwapError):
    code = "INSCRIPTION_NOT_FOUND"
    http_status = 404


class BatchTooLarge(SwapError):
    code = "BATCH_TOO_LARGE"
    http_status = 400


class NoLossToHarvest(SwapError):
    code = "NO_LOSS_TO_HARVEST"
    http_status = 400


class SignatureValidationFailed(SwapError):
    """Operator's own signature did not validate. Fatal, never retried."""

    code = "SIGNATURE_VALIDATION_FAILED"
    http_status = 500


class ConfigurationError(SwapError):
    """Required process configuration is missing or inconsistent. Fatal."""

    code = "CONFIGURATION_ERROR"
    http_status = 500


class UTXOSourceError(SwapError):
    """The UTXO source could not be reached or returned garbage."""

    code = "UTXO_SOURCE_UNAVAILABLE"
    http_status = 502


class PsbtSanityError(SwapError):
    code = "PSBT_SANITY_CHECK_FAILED"
    http_status = 400


class IntentMismatch(SwapError):
    """The PSBT does not match the receipt issued when it was built."""

    code = "INTENT_MISMATCH"
    http_status = 400


class FinalizationError(SwapError):
    code = "FINALIZATION_ERROR"
    http_status = 400


class BroadcastRejected(SwapError):
    """The network refused the transaction. ``details`` holds the upstream text."""

    code = "BROADCAST_REJECTED"
    http_status = 502
