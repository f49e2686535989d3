"""
HTTP API for the Harvy buyer service.
"""

from __future__ import annotations

import contextlib
import math
from typing import Any

from aiohttp import web
from hvcore.errors import InvalidRequest, SwapError
from hvcore.fees import service_fee
from hvcore.models import OrdinalSale, SwapIntent
from hvwallet.wallet.address import short
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from buyer.builder import SwapBuilder, SwapOffer
from buyer.config import Settings
from buyer.finalizer import Finalizer
from buyer.rate_limiter import RateLimiter
from buyer.verification import SwapReceipt


class OfferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inscription_id: str = Field(alias="inscriptionId", min_length=1)
    seller_address: str = Field(alias="sellerAddress", min_length=1)
    purchase_price_sats: int = Field(alias="purchasePriceSats")
    current_price_sats: int = Field(default=0, alias="currentPriceSats")
    btc_price_usd: float = Field(alias="btcPriceUSD")
    user_tax_rate: float | None = Field(default=None, alias="userTaxRate")


class BatchOrdinal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inscription_id: str = Field(alias="inscriptionId", min_length=1)
    purchase_price_sats: int = Field(alias="purchasePriceSats")
    current_price_sats: int = Field(default=0, alias="currentPriceSats")


class BatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ordinals: list[BatchOrdinal]
    seller_address: str = Field(alias="sellerAddress", min_length=1)
    btc_price_usd: float = Field(alias="btcPriceUSD")
    user_tax_rate: float | None = Field(default=None, alias="userTaxRate")


class FinalizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    psbt_base64: str = Field(alias="psbtBase64", min_length=1)
    receipt: SwapReceipt | None = None
    commitment: str | None = None


async def _parse(request: web.Request, model: type[BaseModel]) -> Any:
    try:
        body = await request.json()
    except ValueError as e:
        raise InvalidRequest("Request body must be JSON") from e
    try:
        return model.model_validate(body)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise InvalidRequest(
            f"Missing or invalid fields: {', '.join(fields)}", details=fields
        ) from e


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except SwapError as e:
        if e.http_status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.code}: {e.message}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {e.code}: {e.message}")
        return web.json_response(e.to_dict(), status=e.http_status)


class SwapServer:
    def __init__(
        self,
        settings: Settings,
        builder: SwapBuilder,
        finalizer: Finalizer,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings
        self.builder = builder
        self.finalizer = finalizer
        self.rate_limiter = rate_limiter or RateLimiter(settings.rate_limit_per_hour)
        self.app = web.Application(middlewares=[error_middleware])
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/api/fee-quote", self._handle_fee_quote)
        self.app.router.add_post("/api/create-psbt-offer", self._handle_create_offer)
        self.app.router.add_post("/api/create-batch-psbt", self._handle_create_batch)
        self.app.router.add_post("/api/finalize-psbt", self._handle_finalize)

    def _rate_limited(self, request: web.Request, key: str | None) -> web.Response | None:
        # Bech32 addresses are case-insensitive; callers pass the lowercased form.
        identity = key or request.remote or "unknown"
        if self.rate_limiter.check(identity):
            return None
        logger.warning(f"Rate limit hit for {short(identity)}")
        return web.json_response(
            {
                "error": "RATE_LIMITED",
                "message": "Too many transaction requests. Please try again later.",
            },
            status=429,
            headers={"Retry-After": str(self.rate_limiter.retry_after(identity))},
        )

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "network": self.settings.bitcoin_network.value,
                "operatorConfigured": self.builder.operator_key is not None,
            }
        )

    async def _handle_fee_quote(self, request: web.Request) -> web.Response:
        raw = request.query.get("taxSavingsUSD")
        try:
            savings = float(raw) if raw is not None else None
        except ValueError as e:
            raise InvalidRequest("taxSavingsUSD must be a number") from e
        if savings is None or not math.isfinite(savings) or savings < 0:
            raise InvalidRequest("taxSavingsUSD must be a non-negative number")

        fee = service_fee(savings, self.builder.policy.fee_tiers)
        return web.json_response(
            {
                "feeUSD": fee.fee_usd,
                "feePercent": fee.fee_percent,
                "tier": fee.tier,
                "tierMax": fee.tier_max,
            }
        )

    async def _handle_create_offer(self, request: web.Request) -> web.Response:
        body: OfferRequest = await _parse(request, OfferRequest)
        limited = self._rate_limited(request, body.seller_address.lower())
        if limited is not None:
            return limited

        intent = SwapIntent(
            ordinals=[
                OrdinalSale(
                    inscription_id=body.inscription_id,
                    purchase_price_sats=body.purchase_price_sats,
                    current_price_sats=body.current_price_sats,
                )
            ],
            seller_address=body.seller_address,
            btc_price_usd=body.btc_price_usd,
            tax_rate=body.user_tax_rate,
        )
        offer = await self.builder.build_single_swap(intent)
        quote = offer.quote

        details = offer.details()
        inscription = offer.inscriptions[0].utxo
        details["inscriptionUTXO"] = {
            "txid": inscription.txid,
            "vout": inscription.vout,
            "value": inscription.value,
        }
        return web.json_response(
            {
                "success": True,
                **self._psbt_fields(offer),
                "transaction": {
                    "inscriptionId": body.inscription_id,
                    "offerSats": offer.offer_sats,
                    "serviceFeeSats": quote.service_fee_sats,
                    "taxCalculation": {
                        "purchasePriceSats": quote.purchase_price_sats,
                        "currentPriceSats": quote.current_price_sats,
                        "taxLossSats": quote.tax_loss_sats,
                        "taxLossUSD": quote.tax_loss_usd,
                        "taxSavingsUSD": quote.tax_savings_usd,
                        "taxRate": quote.tax_rate,
                    },
                    "serviceFee": self._service_fee_fields(offer),
                    "sellerNetCash": offer.seller_net_cash_sats,
                    "sellerNetBenefit": quote.seller_net_benefit_usd,
                },
                "details": details,
            }
        )

    async def _handle_create_batch(self, request: web.Request) -> web.Response:
        body: BatchRequest = await _parse(request, BatchRequest)
        limited = self._rate_limited(request, body.seller_address.lower())
        if limited is not None:
            return limited

        intent = SwapIntent(
            ordinals=[
                OrdinalSale(
                    inscription_id=o.inscription_id,
                    purchase_price_sats=o.purchase_price_sats,
                    current_price_sats=o.current_price_sats,
                )
                for o in body.ordinals
            ],
            seller_address=body.seller_address,
            btc_price_usd=body.btc_price_usd,
            tax_rate=body.user_tax_rate,
        )
        offer = await self.builder.build_batch_swap(intent)
        quote = offer.quote

        return web.json_response(
            {
                "success": True,
                **self._psbt_fields(offer),
                "transaction": {
                    "ordinalCount": len(offer.inscriptions),
                    "totalOfferSats": offer.offer_sats,
                    "totalServiceFeeSats": quote.service_fee_sats,
                    "taxCalculation": {
                        "totalPurchaseSats": quote.purchase_price_sats,
                        "totalCurrentSats": quote.current_price_sats,
                        "totalLossSats": quote.tax_loss_sats,
                        "totalLossUSD": quote.tax_loss_usd,
                        "taxSavingsUSD": quote.tax_savings_usd,
                        "taxRate": quote.tax_rate,
                    },
                    "serviceFee": self._service_fee_fields(offer),
                    "sellerNetCash": offer.seller_net_cash_sats,
                    "sellerNetBenefit": quote.seller_net_benefit_usd,
                },
                "details": offer.details(),
            }
        )

    async def _handle_finalize(self, request: web.Request) -> web.Response:
        body: FinalizeRequest = await _parse(request, FinalizeRequest)
        limited = self._rate_limited(request, None)
        if limited is not None:
            return limited

        txid = await self.finalizer.finalize_and_broadcast(
            body.psbt_base64, body.receipt, body.commitment
        )
        return web.json_response(
            {
                "success": True,
                "txid": txid,
                "message": "Transaction broadcast to the Bitcoin network",
                "explorerUrl": self.settings.explorer_url(txid),
            }
        )

    @staticmethod
    def _psbt_fields(offer: SwapOffer) -> dict[str, Any]:
        return {
            "psbtBase64": offer.psbt_base64,
            "psbtHex": offer.psbt_hex,
            "sellerSignIndices": offer.seller_sign_indices,
            "receipt": offer.receipt.model_dump(mode="json"),
            "commitment": offer.commitment,
        }

    @staticmethod
    def _service_fee_fields(offer: SwapOffer) -> dict[str, Any]:
        fee = offer.quote.fee
        return {
            "tier": fee.tier,
            "percent": fee.fee_percent,
            "usd": fee.fee_usd,
            "sats": offer.quote.service_fee_sats,
        }

    async def start(self) -> None:
        logger.info(f"Starting swap server on {self.settings.http_host}:{self.settings.port}")

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.settings.http_host, self.settings.port)
        await self.site.start()

        logger.info(f"Swap server running at http://{self.settings.http_host}:{self.settings.port}")

    async def stop(self) -> None:
        logger.info("Stopping swap server...")

        if self.site:
            with contextlib.suppress(RuntimeError):
                await self.site.stop()
            self.site = None

        if self.runner:
            with contextlib.suppress(RuntimeError):
                await self.runner.cleanup()
            self.runner = None

        await self.builder.source.close()
