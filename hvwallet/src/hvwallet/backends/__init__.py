"""
UTXO source implementations.

Available backends:
- MempoolBackend: Mempool/Esplora-style REST API (mempool.space or self-hosted)
"""

from hvwallet.backends.base import UTXOSource
from hvwallet.backends.mempool import MempoolBackend

__all__ = [
    "MempoolBackend",
    "UTXOSource",
]
