"""
Command-line interface for the Harvy buyer service.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Annotated

import typer
from hvcore.errors import SwapError
from hvcore.fees import quote_swap
from hvwallet.backends.mempool import MempoolBackend
from loguru import logger

from buyer.builder import SwapBuilder
from buyer.config import Settings, get_settings
from buyer.finalizer import Finalizer
from buyer.rate_limiter import RateLimiter
from buyer.server import SwapServer
from buyer.verification import ReceiptSigner, SwapReceipt

app = typer.Typer(
    name="harvy",
    help="Harvy - Tax-loss harvesting swaps for Bitcoin Ordinals",
    add_completion=False,
)


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def create_services(settings: Settings) -> tuple[SwapBuilder, Finalizer]:
    """Wire the UTXO source, builder and finalizer from settings."""
    policy = settings.policy()
    key = settings.operator_key()
    source = MempoolBackend(settings.mempool_api_url, timeout=settings.request_timeout)

    builder = SwapBuilder(source, policy, key, settings.bitcoin_network)
    finalizer = Finalizer(
        source,
        policy,
        receipt_signer=ReceiptSigner.from_operator_key(key) if key else None,
        require_receipt=settings.harvy_require_receipt,
    )
    return builder, finalizer


async def run_server(settings: Settings) -> None:
    builder, finalizer = create_services(settings)
    if builder.operator_key is None:
        logger.warning("HARVY_WALLET_PRIVATE_KEY not set; swap endpoints will fail")
    else:
        logger.info(f"Operator address: {builder.operator_key.address}")
    logger.info(f"Network: {settings.bitcoin_network.value}")
    logger.info(f"Mempool API: {settings.mempool_api_url}")

    server = SwapServer(settings, builder, finalizer, RateLimiter(settings.rate_limit_per_hour))
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await server.stop()


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="HTTP bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", help="HTTP port")] = None,
    log_level: Annotated[str | None, typer.Option("--log-level", "-l")] = None,
) -> None:
    """Run the HTTP API."""
    settings = get_settings()
    if host is not None:
        settings.http_host = host
    if port is not None:
        settings.port = port
    setup_logging(log_level or settings.log_level)

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except SwapError as e:
        logger.error(f"{e.code}: {e.message}")
        raise typer.Exit(1) from e


@app.command()
def quote(
    purchase_sats: Annotated[int, typer.Argument(help="Original purchase price in sats")],
    current_sats: Annotated[int, typer.Argument(help="Current value in sats")],
    btc_price: Annotated[float, typer.Option("--btc-price", "-p", help="BTC price in USD")],
    tax_rate: Annotated[
        float | None, typer.Option("--tax-rate", "-t", help="Tax rate (0.00-1.00)")
    ] = None,
) -> None:
    """Show the tax savings and service fee for a sale."""
    settings = get_settings()
    setup_logging("WARNING")
    policy = settings.policy()
    rate = tax_rate if tax_rate is not None else policy.default_tax_rate

    try:
        result = quote_swap(purchase_sats, current_sats, btc_price, rate, policy)
    except SwapError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1) from e

    typer.echo(f"Tax loss:       {result.tax_loss_sats:,} sats (${result.tax_loss_usd:,.2f})")
    typer.echo(f"Tax savings:    ${result.tax_savings_usd:,.2f} at {rate:.0%}")
    typer.echo(
        f"Service fee:    ${result.fee.fee_usd:,.2f} "
        f"(tier {result.fee.tier}, {result.fee.fee_percent}%) = {result.service_fee_sats:,} sats"
    )
    typer.echo(f"Net benefit:    ${result.seller_net_benefit_usd:,.2f}")
    if result.tax_loss_sats <= 0:
        typer.echo("Warning: no loss to harvest", err=True)
    elif result.fee.fee_usd > policy.max_service_fee_usd:
        typer.echo(
            f"Warning: fee exceeds the ${policy.max_service_fee_usd:.2f} limit; "
            "a swap would be refused",
            err=True,
        )


@app.command()
def finalize(
    psbt: Annotated[str, typer.Argument(help="Signed PSBT (base64) or path to a file with it")],
    receipt_file: Annotated[
        Path | None, typer.Option("--receipt", "-r", help="Build receipt JSON file")
    ] = None,
    commitment: Annotated[
        str | None, typer.Option("--commitment", "-c", help="Receipt commitment (hex)")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Finalize a seller-signed PSBT and broadcast it."""
    setup_logging(log_level)
    settings = get_settings()

    psbt_path = Path(psbt)
    psbt_base64 = psbt_path.read_text().strip() if psbt_path.is_file() else psbt.strip()
    receipt = (
        SwapReceipt.model_validate(json.loads(receipt_file.read_text()))
        if receipt_file
        else None
    )

    async def _run() -> str:
        _, finalizer = create_services(settings)
        try:
            return await finalizer.finalize_and_broadcast(psbt_base64, receipt, commitment)
        finally:
            await finalizer.source.close()

    try:
        txid = asyncio.run(_run())
    except SwapError as e:
        logger.error(f"{e.code}: {e.message}")
        if e.details:
            logger.error(f"Details: {e.details}")
        raise typer.Exit(1) from e

    typer.echo(txid)
    typer.echo(settings.explorer_url(txid))


@app.command("operator-info")
def operator_info() -> None:
    """Show the operator address derived from the configured key."""
    settings = get_settings()
    setup_logging("WARNING")
    try:
        key = settings.operator_key()
    except SwapError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1) from e

    typer.echo(f"Network:  {settings.bitcoin_network.value}")
    if key is None:
        typer.echo("Operator key: not configured (set HARVY_WALLET_PRIVATE_KEY)")
        raise typer.Exit(1)
    typer.echo(f"Address:  {key.address}")
    typer.echo(f"Pubkey:   {key.pubkey.hex()}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
