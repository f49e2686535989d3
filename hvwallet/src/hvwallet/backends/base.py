"""
Base UTXO source interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from hvcore.models import UnspentOutput


class UTXOSource(ABC):
    """
    Read access to the UTXO set plus transaction broadcast.

    Implementations raise UTXOSourceError when a lookup cannot be completed
    and BroadcastRejected when the network refuses a transaction.
    """

    @abstractmethod
    async def get_utxos(self, address: str) -> list[UnspentOutput]:
        """Get unspent outputs for an address (without raw transactions)"""

    @abstractmethod
    async def get_raw_transaction(self, txid: str) -> str:
        """Get the full serialized transaction as hex"""

    @abstractmethod
    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    async def close(self) -> None:
        """Release network resources."""
