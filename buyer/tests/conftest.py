"""
Shared fixtures for buyer tests.

FakeUTXOSource serves real serialized previous transactions so that PSBTs
built against it carry consistent UTXO data and valid signatures.
"""

from __future__ import annotations

from collections.abc import Callable

import bech32
import pytest
from coincurve import PrivateKey
from embit.script import Script, Witness
from embit.transaction import Transaction, TransactionInput, TransactionOutput
from hvcore.errors import BroadcastRejected, UTXOSourceError
from hvcore.models import NetworkType, SwapPolicy, UnspentOutput
from hvwallet.backends.base import UTXOSource
from hvwallet.wallet.address import address_to_scriptpubkey
from hvwallet.wallet.keys import OperatorKey
from hvwallet.wallet.psbt import PSBT_IN_TAP_KEY_SIG, Psbt
from hvwallet.wallet.signing import SIGHASH_DEFAULT

from buyer.builder import SwapBuilder
from buyer.finalizer import Finalizer
from buyer.verification import ReceiptSigner

OPERATOR_SECRET = b"\x11" * 32
SELLER_SECRET = b"\x22" * 32


class FakeUTXOSource(UTXOSource):
    def __init__(self) -> None:
        self.utxos: dict[str, list[UnspentOutput]] = {}
        self.raw_txs: dict[str, str] = {}
        self.calls: list[str] = []
        self.broadcasts: list[str] = []
        self.reject_with: str | None = None
        self._seed = 0

    def fund(self, address: str, *values: int) -> list[UnspentOutput]:
        """Create a confirmed transaction paying ``values`` to ``address``."""
        self._seed += 1
        script = address_to_scriptpubkey(address)
        tx = Transaction(
            vin=[TransactionInput(bytes.fromhex(f"{self._seed:064x}"), 0)],
            vout=[TransactionOutput(v, Script(script)) for v in values],
        )
        txid = tx.txid().hex()
        self.raw_txs[txid] = tx.serialize().hex()
        created = [UnspentOutput(txid=txid, vout=i, value=v) for i, v in enumerate(values)]
        self.utxos.setdefault(address, []).extend(created)
        return created

    async def get_utxos(self, address: str) -> list[UnspentOutput]:
        self.calls.append(f"get_utxos:{address}")
        return list(self.utxos.get(address, []))

    async def get_raw_transaction(self, txid: str) -> str:
        self.calls.append(f"get_raw_transaction:{txid}")
        try:
            return self.raw_txs[txid]
        except KeyError as e:
            raise UTXOSourceError(f"Transaction {txid} not found") from e

    async def broadcast(self, raw_tx_hex: str) -> str:
        self.calls.append("broadcast")
        if self.reject_with is not None:
            raise BroadcastRejected(
                f"Broadcast rejected: {self.reject_with}", details=self.reject_with
            )
        self.broadcasts.append(raw_tx_hex)
        return Transaction.parse(bytes.fromhex(raw_tx_hex)).txid().hex()


@pytest.fixture
def network() -> NetworkType:
    return NetworkType.TESTNET


@pytest.fixture
def operator_key(network: NetworkType) -> OperatorKey:
    return OperatorKey(PrivateKey(OPERATOR_SECRET), network)


@pytest.fixture
def seller_key() -> PrivateKey:
    return PrivateKey(SELLER_SECRET)


@pytest.fixture
def seller_address(seller_key: PrivateKey, network: NetworkType) -> str:
    return bech32.encode(network.hrp, 1, seller_key.public_key.format()[1:])


@pytest.fixture
def source() -> FakeUTXOSource:
    return FakeUTXOSource()


@pytest.fixture
def policy() -> SwapPolicy:
    return SwapPolicy()


@pytest.fixture
def builder(
    source: FakeUTXOSource, policy: SwapPolicy, operator_key: OperatorKey, network: NetworkType
) -> SwapBuilder:
    return SwapBuilder(source, policy, operator_key, network)


@pytest.fixture
def finalizer(source: FakeUTXOSource, policy: SwapPolicy, operator_key: OperatorKey) -> Finalizer:
    return Finalizer(source, policy, ReceiptSigner.from_operator_key(operator_key))


@pytest.fixture
def sign_seller(seller_key: PrivateKey) -> Callable[..., str]:
    """
    Return a function that adds the seller's key-path signatures to a PSBT.

    With ``finalize=True`` the signature goes straight into the final witness,
    as wallets that finalize their own inputs do.
    """

    def _sign(psbt_base64: str, indices: list[int], finalize: bool = False) -> str:
        psbt = Psbt.from_base64(psbt_base64)
        for index in indices:
            signature = seller_key.sign_schnorr(psbt.sighash(index, SIGHASH_DEFAULT))
            if finalize:
                psbt.inputs[index].final_scriptwitness = Witness([signature])
            else:
                psbt.inputs[index].unknown[PSBT_IN_TAP_KEY_SIG] = signature
        return psbt.to_base64()

    return _sign
