"""
Operator CLI for the settlement core.

Usage:
    tap-settle [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.table import Table

from .config import SettlementSettings
from .container import SettlementContainer
from .exceptions import AttestationNotReadyError, SettlementError
from .logging_config import setup_logging
from .models import TransferRecord

console = Console()


def _run(ctx: click.Context, work: Callable[[SettlementContainer], Awaitable[Any]]) -> Any:
    settings: SettlementSettings = ctx.obj["settings"]

    async def runner() -> Any:
        container = SettlementContainer(settings)
        try:
            return await work(container)
        finally:
            await container.close()

    try:
        return asyncio.run(runner())
    except AttestationNotReadyError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        ctx.exit(0)
    except SettlementError as e:
        console.print(f"[red]Error ({e.error_code}): {e.message}[/red]")
        ctx.exit(1)


def _transfer_table(transfer: TransferRecord | None) -> Table:
    table = Table(show_header=False, box=None)
    if transfer is None:
        table.add_row("Transfer", "[dim]none[/dim]")
        return table
    table.add_row("Transfer", f"[cyan]{transfer.transfer_id}[/cyan]")
    table.add_row("Route", f"{transfer.burn_chain.value} -> {transfer.mint_chain.value}")
    table.add_row("Status", transfer.status.value)
    for label, value in (
        ("Burn tx", transfer.burn_tx_hash),
        ("Attestation", transfer.attestation_id),
        ("Mint tx", transfer.mint_tx_hash),
        ("Error", transfer.error),
    ):
        if value:
            table.add_row(label, value)
    return table


@click.group()
@click.option("--env-file", type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, env_file: str | None, verbose: bool):
    """TAP settlement - cross-chain USDC settlement operations."""
    ctx.ensure_object(dict)
    settings = SettlementSettings(_env_file=env_file) if env_file else SettlementSettings()
    setup_logging("DEBUG" if verbose else settings.log_level, json_format=settings.log_json)
    ctx.obj["settings"] = settings


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create database tables."""
    async def work(container: SettlementContainer):
        await container.database.create_all()
        return container.database.backend

    backend = _run(ctx, work)
    console.print(f"[green]✓ Database initialized[/green] ({backend})")


@cli.group()
def merchant():
    """Merchant management commands."""


@merchant.command("create")
@click.option("--name", required=True, help="Merchant name")
@click.option("--chain", "payout_chain", required=True, help="Payout chain: SOLANA, ETHEREUM or BASE")
@click.option("--address", "payout_address", required=True, help="Payout address")
@click.option("--email", help="Contact email")
@click.pass_context
def merchant_create(ctx, name: str, payout_chain: str, payout_address: str, email: str | None):
    """Onboard a merchant."""
    record = _run(ctx, lambda c: c.merchant_service.create_merchant(name, payout_chain, payout_address, email))
    console.print(f"[green]✓ Merchant created[/green]: [cyan]{record.merchant_id}[/cyan]")
    console.print(f"  Payout: {record.payout_chain.value} {record.payout_address}")


@merchant.command("show")
@click.argument("merchant_id")
@click.pass_context
def merchant_show(ctx, merchant_id: str):
    """Show a merchant and its recent payouts."""
    async def work(container: SettlementContainer):
        record = await container.merchant_service.get_merchant(merchant_id)
        payouts = await container.payout_service.list_merchant_payouts(merchant_id, limit=10)
        return record, payouts

    record, payouts = _run(ctx, work)
    console.print(f"\n[bold blue]{record.name}[/bold blue] ({record.merchant_id})")
    console.print(f"Payout: {record.payout_chain.value} {record.payout_address}\n")

    table = Table(title="Recent payouts")
    table.add_column("Payout", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Tx")
    for payout in payouts:
        color = {"SENT": "green", "FAILED": "red"}.get(payout.status.value, "yellow")
        table.add_row(payout.payout_id, str(payout.amount), f"[{color}]{payout.status.value}[/{color}]",
                      payout.tx_hash or "")
    console.print(table)


@cli.command()
@click.option("--merchant", "merchant_id", required=True, help="Merchant ID")
@click.option("--chain", "source_chain", required=True, help="Chain the deposit arrived on")
@click.option("--tx", "source_tx_hash", required=True, help="Deposit transaction hash")
@click.option("--amount", required=True, help="USDC amount")
@click.option("--custodial-address", required=True, help="Custodial address that received the deposit")
@click.pass_context
def register(ctx, merchant_id: str, source_chain: str, source_tx_hash: str, amount: str, custodial_address: str):
    """Register an incoming deposit."""
    result = _run(ctx, lambda c: c.payment_service.register_incoming_payment(
        merchant_id, source_chain, source_tx_hash, amount, custodial_address,
    ))
    verb = "registered" if result.created else "already registered"
    console.print(f"[green]✓ Payment {verb}[/green]: [cyan]{result.payment.payment_id}[/cyan] "
                  f"({result.payment.status.value})")
    console.print(_transfer_table(result.transfer))
    if result.payout:
        console.print(f"  Payout: {result.payout.payout_id} {result.payout.status.value}")


@cli.command()
@click.argument("payment_id")
@click.pass_context
def bridge(ctx, payment_id: str):
    """Start the bridge (burn) for a payment."""
    result = _run(ctx, lambda c: c.orchestrator.start_bridge_for_payment(payment_id))
    console.print(f"[green]{result.message}[/green]")
    console.print(_transfer_table(result.transfer))


@cli.command()
@click.argument("transfer_id")
@click.pass_context
def poll(ctx, transfer_id: str):
    """Poll the attestation and mint for a transfer."""
    result = _run(ctx, lambda c: c.orchestrator.poll_attestation_and_mint(transfer_id))
    console.print(f"[green]{result.message}[/green]")
    console.print(_transfer_table(result.transfer))
    if result.payout:
        console.print(f"  Payout: {result.payout.payout_id} {result.payout.status.value} {result.payout.tx_hash or ''}")


@cli.command("run-pass")
@click.option("--limit", type=int, help="Maximum transfers per stage")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def run_pass(ctx, limit: int | None, as_json: bool):
    """Run one settlement pass over all active transfers."""
    report = _run(ctx, lambda c: c.runner.run_once(limit))
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    table = Table(title="Settlement pass")
    table.add_column("Started", justify="right")
    table.add_column("Completed", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Errors", justify="right")
    table.add_row(str(report.started), str(report.completed), str(report.pending),
                  str(report.failed), str(len(report.errors)))
    console.print(table)
    if report.unpaid_transfers:
        console.print(f"[yellow]Completed without payout:[/yellow] {', '.join(report.unpaid_transfers)}")
    if report.stalled_transfers:
        console.print(f"[yellow]Stalled awaiting attestation:[/yellow] {', '.join(report.stalled_transfers)}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
