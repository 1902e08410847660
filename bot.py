#!/usr/bin/env python3
"""
Wrap/Unwrap Bot
===============
Randomly wraps the native asset into its wrapped token and back, at random
amounts and intervals, with dynamic EIP-1559 fee estimation.

Usage:
    python bot.py init              # write wrap_bot.yaml
    python bot.py check             # test connection, fees and balances
    python bot.py fees              # show the current fee quote
    python bot.py once --dry-run    # run a single operation
    python bot.py run               # run until Ctrl+C
"""

import sys
import signal
import asyncio
import argparse
from pathlib import Path
from typing import Optional

from rich.table import Table
from rich.panel import Panel
from rich import box

from config import Config, ConfigManager
from chain_client import WrapperClient
from fee_oracle import FeeOracle
from scheduler import Scheduler
from logging_utils import print_metrics_summary
from utils import (
    console,
    setup_logging,
    format_address,
    format_amount,
    format_gwei,
    mask_sensitive,
    sanitize_error_message,
)

DEFAULT_CONFIG_PATH = "./wrap_bot.yaml"


def load_config(config_path: str, dry_run: bool = False) -> Optional[Config]:
    """Load and validate configuration; prints problems and returns None if invalid."""
    manager = ConfigManager(Path(config_path))
    if not manager.exists():
        console.print(f"[yellow]⚠ {config_path} not found, using defaults and environment[/yellow]")

    try:
        config = manager.load_config()
    except Exception as e:
        console.print(f"[red]✗ Failed to read config: {sanitize_error_message(e)}[/red]")
        return None

    if dry_run:
        config.dry_run = True

    problems = config.validate()
    if problems:
        console.print("[red]✗ Invalid configuration:[/red]")
        for problem in problems:
            console.print(f"[red]  - {problem}[/red]")
        return None

    setup_logging(config.log_level, config.log_file)
    return config


def connect_client(config: Config) -> Optional[WrapperClient]:
    """Create the chain client and verify the RPC connection."""
    console.print("\n[bold cyan]🔗 Connecting...[/bold cyan]")
    try:
        client = WrapperClient(config)
        block_number = client.connect()
    except Exception as e:
        console.print(f"[red]✗ Failed to connect: {sanitize_error_message(e)}[/red]")
        return None

    console.print(f"[green]✓ Connected! Current block: {block_number}[/green]")
    return client


def show_config(config: Config, client: WrapperClient):
    table = Table(title="Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("RPC", mask_sensitive(config.rpc_url, 12))
    table.add_row("Contract", format_address(config.wrapper_contract))
    table.add_row("Wallet", format_address(client.address) if client.address else "-")
    table.add_row("Amount range", f"{config.min_amount} - {config.max_amount} {config.native_symbol}")
    table.add_row("Interval range", f"{config.min_interval_minutes} - {config.max_interval_minutes} minutes")
    table.add_row("Gas limit", str(config.gas_limit))
    table.add_row("Gas multiplier", f"{config.gas_multiplier}x")
    table.add_row("Gas bounds", f"{config.min_gas_price_gwei} - {config.max_gas_price_gwei} Gwei")
    table.add_row("Mode", "🧪 DRY RUN" if config.dry_run else "💰 LIVE")

    console.print(table)


def show_status(scheduler: Scheduler):
    status = scheduler.status()

    table = Table(title="Bot Status", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Operations", str(status["operation_count"]))
    table.add_row("Successful", str(status["successful_operations"]))
    table.add_row("Failed", str(status["failed_operations"]))
    quote = status["last_fee_quote"]
    if quote:
        table.add_row("Last fee", f"{quote['priority_fee']} / {quote['max_fee']} ({quote['source']})")
    if status["uptime"]:
        table.add_row("Uptime", status["uptime"])

    console.print(table)


def init_command(config_path: str, overwrite: bool = False) -> int:
    """Write the default configuration file."""
    manager = ConfigManager(Path(config_path))
    try:
        path = manager.write_default(overwrite=overwrite)
    except FileExistsError:
        console.print(f"[yellow]⚠ {config_path} already exists (use --force to overwrite)[/yellow]")
        return 1

    console.print(f"[green]✓ Default config created ({path})[/green]")
    console.print("\n[bold]NEXT STEPS:[/bold]")
    console.print("1. Edit the config (RPC URL, contract, amounts)")
    console.print("2. export WRAP_BOT_PRIVATE_KEY=0x...")
    console.print("3. Run: python bot.py check")
    console.print("4. Run: python bot.py run --dry-run")
    return 0


def check_command(config_path: str) -> int:
    """Test connection, fee data, contract and balances."""
    config = load_config(config_path, dry_run=True)
    if config is None:
        return 1

    client = connect_client(config)
    if client is None:
        return 1

    console.print("\n[bold cyan]⛽ Fee data[/bold cyan]")
    try:
        params = client.get_fee_parameters()
        for label, value in (
            ("Base fee", params.last_base_fee),
            ("Max priority fee", params.priority_fee),
            ("Max fee", params.max_fee),
            ("Gas price", params.gas_price),
        ):
            if value is not None:
                console.print(f"  {label}: {format_gwei(value)}")
    except Exception as e:
        console.print(f"[red]✗ Fee data failed: {sanitize_error_message(e)}[/red]")

    console.print("\n[bold cyan]📜 Contract[/bold cyan]")
    try:
        supply = client.get_total_supply()
        console.print(f"  Total {config.wrapped_symbol} supply: {format_amount(supply, config.wrapped_symbol)}")
    except Exception as e:
        console.print(f"[red]✗ Contract call failed: {sanitize_error_message(e)}[/red]")
        return 1

    if client.address:
        console.print("\n[bold cyan]💰 Balances[/bold cyan]")
        console.print(f"[dim]Address: {client.address}[/dim]")
        try:
            console.print(f"  {config.native_symbol}: {format_amount(client.get_native_balance(), config.native_symbol)}")
            console.print(f"  {config.wrapped_symbol}: {format_amount(client.get_balance(), config.wrapped_symbol)}")
        except Exception as e:
            console.print(f"[red]✗ Balance check failed: {sanitize_error_message(e)}[/red]")
            return 1

    console.print("\n[green]✓ All checks passed! Bot is ready to run.[/green]")
    return 0


def fees_command(config_path: str) -> int:
    """Print the current fee quote and the tier that produced it."""
    config = load_config(config_path, dry_run=True)
    if config is None:
        return 1

    client = connect_client(config)
    if client is None:
        return 1

    oracle = FeeOracle.from_config(config, client)
    quote = oracle.get_fee()

    table = Table(title="Fee Quote", box=box.ROUNDED)
    table.add_column("Tier", style="cyan")
    table.add_column("Result", style="green")
    for estimate in oracle.last_estimates:
        if estimate.ok:
            table.add_row(estimate.strategy, "✓")
        else:
            table.add_row(estimate.strategy, f"[red]{sanitize_error_message(estimate.error)}[/red]")
    console.print(table)

    console.print(f"  Priority fee: {format_gwei(quote.priority_fee)}")
    console.print(f"  Max fee:      {format_gwei(quote.max_fee)}")
    console.print(f"  Source:       {quote.source}")
    return 0


def once_command(config_path: str, dry_run: bool = False) -> int:
    """Run a single wrap or unwrap."""
    config = load_config(config_path, dry_run=dry_run)
    if config is None:
        return 1

    client = connect_client(config)
    if client is None:
        return 1

    scheduler = Scheduler(config, client)
    success = asyncio.run(scheduler.run_cycle())
    show_status(scheduler)
    return 0 if success else 1


async def _run_until_stopped(scheduler: Scheduler):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt
            pass
    await scheduler.start()


def run_command(config_path: str, dry_run: bool = False, metrics_file: Optional[str] = None) -> int:
    """Run the bot until interrupted."""
    config = load_config(config_path, dry_run=dry_run)
    if config is None:
        return 1

    client = connect_client(config)
    if client is None:
        return 1

    scheduler = Scheduler(config, client)

    console.print(Panel.fit(
        f"[bold cyan]🔄 Wrap Bot | {config.native_symbol} ⇄ {config.wrapped_symbol}[/bold cyan]",
        box=box.DOUBLE
    ))
    show_config(config, client)

    try:
        console.print("\n[dim]Testing fee estimation...[/dim]")
        quote = scheduler.fee_oracle.get_fee()
        console.print(
            f"[green]✓ Fee estimation OK - Priority: {format_gwei(quote.priority_fee)}, "
            f"Max: {format_gwei(quote.max_fee)}[/green]"
        )
    except Exception as e:
        console.print(f"[red]✗ Failed to start bot: {sanitize_error_message(e)}[/red]")
        return 1

    console.print("\n[bold green]🚀 Starting wrap bot...[/bold green]")
    console.print("[dim]Press Ctrl+C to stop\n[/dim]")

    try:
        asyncio.run(_run_until_stopped(scheduler))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠ Bot stopped by user[/yellow]")

    show_status(scheduler)
    print_metrics_summary(scheduler.metrics, console)
    if metrics_file:
        scheduler.metrics.save_to_file(metrics_file)
        console.print(f"[dim]Metrics saved to {metrics_file}[/dim]")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Wrap/Unwrap Bot")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH,
                        help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Write default config")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing config")

    subparsers.add_parser("check", help="Test connection, fees and balances")
    subparsers.add_parser("fees", help="Show the current fee quote")

    once_parser = subparsers.add_parser("once", help="Run a single operation")
    once_parser.add_argument("--dry-run", action="store_true", help="Simulation mode")

    run_parser = subparsers.add_parser("run", help="Start the bot")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulation mode")
    run_parser.add_argument("--metrics-file", type=str, help="Save metrics JSON on exit")

    args = parser.parse_args(argv)

    if args.command == "init":
        return init_command(args.config, overwrite=args.force)
    elif args.command == "check":
        return check_command(args.config)
    elif args.command == "fees":
        return fees_command(args.config)
    elif args.command == "once":
        return once_command(args.config, dry_run=args.dry_run)
    elif args.command == "run":
        return run_command(args.config, dry_run=args.dry_run, metrics_file=args.metrics_file)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
