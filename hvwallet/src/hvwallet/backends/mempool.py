"""
Mempool REST API backend.

Works against mempool.space or any self-hosted mempool/esplora instance.
Lookups are retried once on transport errors or 5xx responses; broadcasts
are never retried.
"""

from __future__ import annotations

from typing import Any

import httpx
from hvcore.errors import BroadcastRejected, UTXOSourceError
from hvcore.models import TXID_RE, UnspentOutput
from loguru import logger
from pydantic import ValidationError

from hvwallet.backends.base import UTXOSource
from hvwallet.wallet.address import short

LOOKUP_ATTEMPTS = 2


class MempoolBackend(UTXOSource):
    """UTXO source backed by a mempool.space compatible API."""

    def __init__(
        self,
        base_url: str = "https://mempool.space/testnet/api",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, endpoint: str) -> httpx.Response:
        url = f"{self.base_url}/{endpoint}"
        last_error: str = ""
        for attempt in range(1, LOOKUP_ATTEMPTS + 1):
            try:
                response = await self.client.get(url)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"Mempool API {endpoint} attempt {attempt} failed: {last_error}")
                continue

            if response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"Mempool API {endpoint} attempt {attempt} failed: {last_error}")
                continue
            if response.status_code != 200:
                raise UTXOSourceError(
                    f"Mempool API returned HTTP {response.status_code} for {endpoint}",
                    details=response.text[:200],
                )
            return response

        raise UTXOSourceError(f"Mempool API unavailable for {endpoint}: {last_error}")

    async def get_utxos(self, address: str) -> list[UnspentOutput]:
        response = await self._get(f"address/{address}/utxo")
        try:
            entries: list[dict[str, Any]] = response.json()
            utxos = [
                UnspentOutput(txid=e["txid"], vout=e["vout"], value=e["value"]) for e in entries
            ]
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise UTXOSourceError(f"Malformed UTXO response for {short(address)}") from e

        logger.debug(f"Found {len(utxos)} UTXOs for {short(address)}")
        return utxos

    async def get_raw_transaction(self, txid: str) -> str:
        if not TXID_RE.match(txid):
            raise UTXOSourceError(f"Invalid txid: {txid}")
        response = await self._get(f"tx/{txid}/hex")
        raw_hex = response.text.strip()
        try:
            bytes.fromhex(raw_hex)
        except ValueError as e:
            raise UTXOSourceError(f"Malformed transaction hex for {short(txid)}") from e
        return raw_hex

    async def broadcast(self, raw_tx_hex: str) -> str:
        try:
            response = await self.client.post(
                f"{self.base_url}/tx",
                content=raw_tx_hex,
                headers={"Content-Type": "text/plain"},
            )
        except httpx.TransportError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastRejected(f"Broadcast failed: {e}", details=str(e)) from e

        if not response.is_success:
            logger.error(f"Broadcast rejected (HTTP {response.status_code}): {response.text}")
            raise BroadcastRejected(
                f"Broadcast rejected: {response.text}", details=response.text
            )

        txid = response.text.strip()
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()
