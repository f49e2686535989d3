"""
Swap PSBT construction.

A swap spends the operator's funding UTXOs and the seller's inscription
UTXO(s) in one transaction. Layout is fixed so that signing indices can be
derived from it:

Inputs:
    0..k-1      operator funding (P2WPKH, signed here)
    k..k+N-1    seller inscriptions (Taproot, signed by the seller's wallet)

Outputs:
    seller payment (min payment x N, to the seller)
    N inscription outputs (to the operator, value preserved, input order)
    service fee (to the operator, omitted when zero)
    operator change (omitted when at or below the dust limit)

The operator funds ``payment + service fee + network fee``; the seller's
inscription values pass through unchanged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from hvcore.constants import MAX_BTC_PRICE_USD
from hvcore.errors import (
    BatchTooLarge,
    BelowDustLimit,
    ConfigurationError,
    FeeExceedsLimit,
    InscriptionNotFound,
    InvalidRequest,
    InvalidTrade,
    LimitExceeded,
    NoLossToHarvest,
    UTXOSourceError,
)
from hvcore.fees import quote_swap
from hvcore.models import (
    InscriptionLocator,
    NetworkType,
    SwapIntent,
    SwapPolicy,
    SwapQuote,
    UnspentOutput,
)
from hvwallet.backends.base import UTXOSource
from hvwallet.wallet.address import short, validate_taproot_address
from hvwallet.wallet.keys import OperatorKey
from hvwallet.wallet.psbt import Psbt, PsbtError
from hvwallet.wallet.selection import SelectionResult, select_utxos
from hvwallet.wallet.signing import sign_operator_inputs
from loguru import logger

from buyer.verification import ReceiptSigner, SwapReceipt


@dataclass
class InscriptionInput:
    inscription_id: str
    utxo: UnspentOutput
    input_index: int


@dataclass
class SwapOffer:
    """A built, operator-signed swap PSBT ready for the seller to sign."""

    psbt_base64: str
    psbt_hex: str
    operator_sign_indices: list[int]
    seller_sign_indices: list[int]
    offer_sats: int
    quote: SwapQuote
    receipt: SwapReceipt
    commitment: str
    inscriptions: list[InscriptionInput] = field(default_factory=list)
    operator_input_sats: int = 0
    change_sats: int = 0
    network_fee_sats: int = 0

    @property
    def seller_net_cash_sats(self) -> int:
        return self.offer_sats - self.quote.service_fee_sats

    def details(self) -> dict[str, Any]:
        return {
            "harvyInputCount": len(self.operator_sign_indices),
            "sellerInputCount": len(self.seller_sign_indices),
            "sellerInputIndices": self.seller_sign_indices,
            "inscriptionUTXOs": [
                {
                    "inscriptionId": i.inscription_id,
                    "txid": i.utxo.txid,
                    "vout": i.utxo.vout,
                    "value": i.utxo.value,
                }
                for i in self.inscriptions
            ],
            "outputs": {
                "sellerPayment": self.offer_sats,
                "inscriptionValues": [i.utxo.value for i in self.inscriptions],
                "serviceFee": self.quote.service_fee_sats,
                "harvyChange": self.change_sats,
            },
            "networkFeeSats": self.network_fee_sats,
        }


class SwapBuilder:
    """Builds single and batched swap PSBTs and signs the operator inputs."""

    def __init__(
        self,
        source: UTXOSource,
        policy: SwapPolicy,
        operator_key: OperatorKey | None,
        network: NetworkType = NetworkType.TESTNET,
    ):
        self.source = source
        self.policy = policy
        self.operator_key = operator_key
        self.network = network
        self.receipt_signer = (
            ReceiptSigner.from_operator_key(operator_key) if operator_key else None
        )

    async def build_single_swap(self, intent: SwapIntent) -> SwapOffer:
        if len(intent.ordinals) != 1:
            raise InvalidRequest("A single swap takes exactly one ordinal")
        sale = intent.ordinals[0]

        tax_rate = self._check_pricing(intent)
        locator = InscriptionLocator.parse(sale.inscription_id)

        loss = sale.purchase_price_sats - sale.current_price_sats
        if loss <= 0:
            raise InvalidTrade(
                "This ordinal has a gain, not a loss. Only ordinals held at a loss are bought."
            )
        if loss > self.policy.max_loss_sats:
            raise LimitExceeded(
                f"Loss of {loss} sats exceeds the maximum of {self.policy.max_loss_sats} sats"
            )

        seller_script = validate_taproot_address(intent.seller_address, self.network)
        quote = self._quote(intent, tax_rate)
        payment = self._check_payment(1)
        key, signer = self._require_operator()

        logger.info(
            f"Building swap for {short(locator.inscription_id)}: loss={loss} sats, "
            f"fee={quote.service_fee_sats} sats (tier {quote.fee.tier})"
        )
        return await self._assemble(
            intent, [locator], seller_script, quote, payment, key, signer, batch=False
        )

    async def build_batch_swap(self, intent: SwapIntent) -> SwapOffer:
        count = len(intent.ordinals)
        if count == 0:
            raise InvalidRequest("Missing or empty ordinals list")
        if count > self.policy.max_batch_size:
            raise BatchTooLarge(
                f"Maximum {self.policy.max_batch_size} ordinals per batch transaction, got {count}"
            )

        locators = [InscriptionLocator.parse(o.inscription_id) for o in intent.ordinals]
        if len({loc.outpoint for loc in locators}) != count:
            raise InvalidRequest("Duplicate inscription IDs in batch")

        tax_rate = self._check_pricing(intent)

        loss = intent.total_purchase_sats - intent.total_current_sats
        if loss <= 0:
            raise NoLossToHarvest(
                "No tax loss to harvest. Total current value meets or exceeds purchase cost."
            )
        if loss > self.policy.max_loss_sats:
            raise LimitExceeded(
                f"Total loss of {loss} sats exceeds the maximum of "
                f"{self.policy.max_loss_sats} sats"
            )

        seller_script = validate_taproot_address(intent.seller_address, self.network)
        quote = self._quote(intent, tax_rate)
        payment = self._check_payment(count)
        key, signer = self._require_operator()

        logger.info(
            f"Building batch swap: {count} ordinals, loss={loss} sats, "
            f"fee={quote.service_fee_sats} sats (tier {quote.fee.tier})"
        )
        return await self._assemble(
            intent, locators, seller_script, quote, payment, key, signer, batch=True
        )

    def _check_pricing(self, intent: SwapIntent) -> float:
        if not 0 < intent.btc_price_usd <= MAX_BTC_PRICE_USD:
            raise InvalidRequest(
                f"Invalid BTC price: must be above 0 and at most ${MAX_BTC_PRICE_USD:,.0f}"
            )
        for sale in intent.ordinals:
            if sale.purchase_price_sats < 0 or sale.current_price_sats < 0:
                raise InvalidRequest(f"Negative price for {sale.inscription_id}")

        tax_rate = (
            intent.tax_rate if intent.tax_rate is not None else self.policy.default_tax_rate
        )
        if not 0 <= tax_rate <= 1:
            raise InvalidRequest("Invalid tax rate: must be between 0.00 and 1.00")
        return tax_rate

    def _quote(self, intent: SwapIntent, tax_rate: float) -> SwapQuote:
        quote = quote_swap(
            intent.total_purchase_sats,
            intent.total_current_sats,
            intent.btc_price_usd,
            tax_rate,
            self.policy,
        )
        if quote.fee.fee_usd > self.policy.max_service_fee_usd:
            raise FeeExceedsLimit(
                f"Service fee (${quote.fee.fee_usd:.2f}) exceeds maximum allowed "
                f"(${self.policy.max_service_fee_usd:.2f})"
            )
        return quote

    def _check_payment(self, count: int) -> int:
        if self.policy.min_payment_sats < self.policy.dust_limit_sats:
            raise BelowDustLimit(
                f"Seller payment of {self.policy.min_payment_sats} sats per ordinal is below "
                f"the dust limit ({self.policy.dust_limit_sats} sats)"
            )
        return self.policy.min_payment_sats * count

    def _require_operator(self) -> tuple[OperatorKey, ReceiptSigner]:
        if self.operator_key is None or self.receipt_signer is None:
            raise ConfigurationError("Operator wallet is not configured")
        return self.operator_key, self.receipt_signer

    def _select(
        self, utxos: list[UnspentOutput], target: int, seller_inputs: int, batch: bool
    ) -> SelectionResult:
        if not batch:
            return select_utxos(utxos, target, self.policy.single_fee_estimate_sats)

        # Fee depends on the number of operator inputs, so re-select until the
        # guess covers what was actually selected.
        input_guess = 1
        while True:
            fee = self.policy.estimate_fee(input_guess + seller_inputs, seller_inputs + 3)
            selection = select_utxos(utxos, target, fee)
            if len(selection.selected) <= input_guess:
                return selection
            input_guess = len(selection.selected)

    async def _fetch_raw_transactions(self, utxos: list[UnspentOutput]) -> dict[str, bytes]:
        raw: dict[str, bytes] = {u.txid: u.raw_tx for u in utxos if u.raw_tx is not None}
        missing = list(dict.fromkeys(u.txid for u in utxos if u.txid not in raw))

        results = await asyncio.gather(*(self.source.get_raw_transaction(t) for t in missing))
        for txid, tx_hex in zip(missing, results):
            try:
                raw[txid] = bytes.fromhex(tx_hex)
            except ValueError as e:
                raise UTXOSourceError(f"Malformed transaction hex for {short(txid)}") from e
        return raw

    @staticmethod
    def _add_input(
        psbt: Psbt, utxo: UnspentOutput, raw: dict[str, bytes], expected_script: bytes
    ) -> int:
        try:
            index = psbt.add_input(utxo.txid, utxo.vout, prev_tx=raw[utxo.txid])
        except PsbtError as e:
            raise UTXOSourceError(f"Inconsistent previous transaction: {e}") from e

        spent = psbt.spent_output(index)
        if spent.value != utxo.value or spent.script_pubkey.data != expected_script:
            raise UTXOSourceError(
                f"UTXO {short(utxo.txid)}:{utxo.vout} does not match its previous transaction"
            )
        return index

    async def _assemble(
        self,
        intent: SwapIntent,
        locators: list[InscriptionLocator],
        seller_script: bytes,
        quote: SwapQuote,
        payment: int,
        key: OperatorKey,
        signer: ReceiptSigner,
        batch: bool,
    ) -> SwapOffer:
        seller_utxos = {u.outpoint: u for u in await self.source.get_utxos(intent.seller_address)}
        inscription_utxos: list[UnspentOutput] = []
        for locator in locators:
            utxo = seller_utxos.get(locator.outpoint)
            if utxo is None:
                raise InscriptionNotFound(
                    f"Inscription UTXO {locator.txid}:{locator.vout} not found in seller's wallet",
                    details={"inscriptionId": locator.inscription_id},
                )
            inscription_utxos.append(utxo)

        # Bought inscriptions land on the operator address; small outputs there
        # may carry one and must not be spent as fee funding.
        reserved = {u.outpoint for u in inscription_utxos}
        operator_utxos = [
            u
            for u in await self.source.get_utxos(key.address)
            if u.outpoint not in reserved and u.value > self.policy.max_inscription_utxo_sats
        ]

        target = payment + quote.service_fee_sats
        selection = self._select(operator_utxos, target, len(locators), batch)
        raw = await self._fetch_raw_transactions(selection.selected + inscription_utxos)

        psbt = Psbt()
        operator_indices = [
            self._add_input(psbt, utxo, raw, key.script_pubkey) for utxo in selection.selected
        ]
        inscriptions = [
            InscriptionInput(
                inscription_id=locator.inscription_id,
                utxo=utxo,
                input_index=self._add_input(psbt, utxo, raw, seller_script),
            )
            for locator, utxo in zip(locators, inscription_utxos)
        ]
        seller_indices = [i.input_index for i in inscriptions]

        psbt.add_output(seller_script, payment)
        for inscription in inscriptions:
            psbt.add_output(key.script_pubkey, inscription.utxo.value)
        if quote.service_fee_sats > 0:
            psbt.add_output(key.script_pubkey, quote.service_fee_sats)
        change = selection.change_sats if selection.change_sats > self.policy.dust_limit_sats else 0
        if change:
            psbt.add_output(key.script_pubkey, change)

        inscription_total = sum(u.value for u in inscription_utxos)
        network_fee = selection.total_sats + inscription_total - psbt.total_output_value

        sign_operator_inputs(psbt, key, operator_indices)

        receipt = SwapReceipt.from_psbt(psbt, self.network.value, operator_indices, seller_indices)
        commitment = signer.commit(receipt)

        logger.info(
            f"Swap PSBT built: {psbt.input_count} inputs ({len(operator_indices)} operator), "
            f"{psbt.output_count} outputs, network fee {network_fee} sats"
        )
        return SwapOffer(
            psbt_base64=psbt.to_base64(),
            psbt_hex=psbt.to_hex(),
            operator_sign_indices=operator_indices,
            seller_sign_indices=seller_indices,
            offer_sats=payment,
            quote=quote,
            receipt=receipt,
            commitment=commitment,
            inscriptions=inscriptions,
            operator_input_sats=selection.total_sats,
            change_sats=change,
            network_fee_sats=network_fee,
        )
