"""hourbank CLI -- Typer app with all subcommands."""

from __future__ import annotations

import json
import os
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from hourbank import __version__

console = Console(stderr=True)
out = Console()

app = typer.Typer(
    name="hourbank",
    help=(
        "hourbank: hour-package pricing and prepaid-hour credits.\n\n"
        "Price jobs, browse packages, inspect credit ledgers and\n"
        "redeem hours through a running hourbank server."
    ),
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    epilog=(
        "Common commands:\n"
        "  hourbank packages                     List catalog packages\n"
        "  hourbank quote 40 --complexity high   Itemized price\n"
        "  hourbank suggest 75                   Best package for 75h\n"
        "  hourbank balance cust_1 --ledger data/hourbank_ledger.jsonl\n"
        "  hourbank redeem cust_1 8 --server http://127.0.0.1:8080\n"
        "  hourbank serve --port 8080\n"
    ),
)


def _version_callback(value: bool) -> None:
    if value:
        from rich.panel import Panel
        c = Console()
        c.print(Panel(f"[bold]hourbank[/bold] v{__version__}", border_style="blue"))
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit.",
        callback=_version_callback, is_eager=True,
    ),
) -> None:
    """hourbank: hour-package pricing and prepaid-hour credits."""
    pass


def _engine(pricing_config: Optional[str]):
    from hourbank.core.pricing.catalog import PricingEngine
    from hourbank.core.pricing.rates import load_pricing_config

    path = pricing_config or os.environ.get("HOURBANK_PRICING_CONFIG") or None
    return PricingEngine(load_pricing_config(path))


def _ledger(path: Optional[str]):
    """Read-only view of a ledger file; mutations go through the server."""
    from hourbank.core.api.settings import DEFAULT_DATA_DIR
    from hourbank.core.credits.ledger import CreditLedger

    if not path:
        data_dir = os.environ.get("HOURBANK_DATA_DIR", DEFAULT_DATA_DIR)
        path = str(Path(data_dir) / "hourbank_ledger.jsonl")
    if not Path(path).is_file():
        raise FileNotFoundError(f"No ledger at {path}")
    led = CreditLedger()
    led.configure_persistence(path)
    led.configure_persistence(None)
    return led


def _api_client(server: str):
    import httpx

    return httpx.Client(base_url=server, timeout=30.0)


def _api_post(
    server: str,
    path: str,
    body: Optional[Dict[str, Any]] = None,
    admin_key: Optional[str] = None,
) -> Dict[str, Any]:
    """POST to the hourbank server; error envelopes become RuntimeError."""
    import httpx

    headers = {"x-admin-key": admin_key} if admin_key else {}
    try:
        with _api_client(server) as client:
            resp = client.post(path, json=body, headers=headers)
    except httpx.HTTPError as e:
        raise RuntimeError(f"Cannot reach hourbank server at {server}: {e}") from e
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if resp.status_code >= 400:
        err = data.get("error") if isinstance(data, dict) else None
        if isinstance(err, dict):
            raise RuntimeError(f"{err.get('type')}: {err.get('message')}")
        raise RuntimeError(f"Server answered {resp.status_code} for {path}")
    return data


_PRICING_OPT = typer.Option(
    None, "--pricing-config", help="Pricing YAML (default: built-in tiers and fees)."
)
_LEDGER_OPT = typer.Option(
    None, "--ledger", help="Ledger JSONL file (default: $HOURBANK_DATA_DIR/hourbank_ledger.jsonl)."
)
_JSON_OPT = typer.Option(False, "--json", help="Print JSON instead of a table.")
_SERVER_OPT = typer.Option(
    "http://127.0.0.1:8080", "--server", "-s",
    help="hourbank API server URL.", envvar="HOURBANK_SERVER_URL",
)


# ── version ──────────────────────────────────────────────────────

@app.command()
def version() -> None:
    """Show version info."""
    out.print(f"hourbank {__version__}")


# ── packages ─────────────────────────────────────────────────────

@app.command()
def packages(
    pricing_config: Optional[str] = _PRICING_OPT,
    as_json: bool = _JSON_OPT,
) -> None:
    """List the hour-package catalog.

    Example:
      hourbank packages
      hourbank packages --json
    """
    _run_safe(lambda: _packages_impl(pricing_config, as_json))


def _packages_impl(pricing_config: Optional[str], as_json: bool) -> None:
    engine = _engine(pricing_config)
    pkgs = engine.list_packages()
    if as_json:
        out.print_json(json.dumps([p.to_dict() for p in pkgs]))
        return
    currency = engine.snapshot.config.currency
    table = Table(title=f"Hour packages ({engine.snapshot.config.version})")
    table.add_column("Hours", justify="right")
    table.add_column(f"Rate/h ({currency})", justify="right")
    table.add_column(f"Total ({currency})", justify="right")
    table.add_column("Description")
    for p in pkgs:
        table.add_row(str(p.hours), str(p.price_per_hour), str(p.total_price), p.description)
    out.print(table)


# ── quote ────────────────────────────────────────────────────────

@app.command()
def quote(
    hours: str = typer.Argument(..., help="Hours to price."),
    environments: int = typer.Option(1, "--environments", "-e", help="Number of environments."),
    people: int = typer.Option(1, "--people", "-p", help="Number of people."),
    complexity: str = typer.Option("low", "--complexity", "-c", help="low, medium or high."),
    pricing_config: Optional[str] = _PRICING_OPT,
    as_json: bool = _JSON_OPT,
) -> None:
    """Itemized price for a number of hours.

    Example:
      hourbank quote 40
      hourbank quote 120 --environments 4 --complexity high
    """
    chars = {"environments": environments, "people": people, "complexity": complexity}
    _run_safe(lambda: _quote_impl(hours, chars, pricing_config, as_json))


def _quote_impl(hours: str, chars: dict, pricing_config: Optional[str], as_json: bool) -> None:
    from hourbank.core.pricing.calculator import describe

    breakdown = _engine(pricing_config).compute_price(hours, chars)
    if as_json:
        out.print_json(json.dumps(breakdown.to_dict()))
        return
    table = Table(title=f"{breakdown.hours}h, tier {breakdown.tier}, x{breakdown.multiplier}")
    table.add_column("Component")
    table.add_column(breakdown.currency, justify="right")
    for name, value in describe(breakdown).items():
        label = name.replace("_", " ")
        if name == "final_price":
            table.add_row(f"[bold]{label}[/bold]", f"[bold]{value}[/bold]")
        else:
            table.add_row(label, value)
    out.print(table)


# ── suggest ──────────────────────────────────────────────────────

@app.command()
def suggest(
    hours_needed: str = typer.Argument(..., help="Hours the customer expects to need."),
    pricing_config: Optional[str] = _PRICING_OPT,
) -> None:
    """Smallest catalog package that covers the hours needed.

    Example:
      hourbank suggest 75
    """
    _run_safe(lambda: _suggest_impl(hours_needed, pricing_config))


def _suggest_impl(hours_needed: str, pricing_config: Optional[str]) -> None:
    pkg = _engine(pricing_config).suggest_package(hours_needed)
    out.print(
        f"Suggested package: [bold]{pkg.hours}h[/bold] for {pkg.total_price} "
        f"({pkg.price_per_hour}/h)"
    )


# ── balance ──────────────────────────────────────────────────────

@app.command()
def balance(
    customer_id: str = typer.Argument(..., help="Customer id."),
    ledger: Optional[str] = _LEDGER_OPT,
    as_json: bool = _JSON_OPT,
) -> None:
    """Show a customer's prepaid-hour balance and batches.

    Example:
      hourbank balance cust_1 --ledger data/hourbank_ledger.jsonl
    """
    _run_safe(lambda: _balance_impl(customer_id, ledger, as_json))


def _balance_impl(customer_id: str, ledger_path: Optional[str], as_json: bool) -> None:
    led = _ledger(ledger_path)
    credit = led.get_balance(customer_id)
    batches = led.list_batches(customer_id)
    if as_json:
        out.print_json(json.dumps({"balance": credit.to_dict(), "batches": batches}))
        return
    out.print(
        f"[bold]{customer_id}[/bold]: {credit.available_hours}h available "
        f"of {credit.total_hours}h purchased ({credit.used_hours}h used)"
    )
    if not batches:
        return
    table = Table()
    table.add_column("Batch")
    table.add_column("Purchased", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Status")
    for b in batches:
        table.add_row(b["id"], b["hours_purchased"], b["hours_remaining"], b["status"])
    out.print(table)


# ── redeem ───────────────────────────────────────────────────────

@app.command()
def redeem(
    customer_id: str = typer.Argument(..., help="Customer id."),
    hours: str = typer.Argument(..., help="Hours to consume."),
    server: str = _SERVER_OPT,
) -> None:
    """Consume prepaid hours on a running server, oldest batches first.

    Example:
      hourbank redeem cust_1 8
      hourbank redeem cust_1 8 --server http://billing.internal:8080
    """
    _run_safe(lambda: _redeem_impl(customer_id, hours, server))


def _redeem_impl(customer_id: str, hours: str, server: str) -> None:
    result = _api_post(server, f"/v1/credits/{customer_id}/redeem", {"hours": hours})
    debits = ", ".join(f"{d['batch_id']}:{d['hours']}h" for d in result["debits"])
    out.print(
        f"[green]Redeemed {result['hours_redeemed']}h[/green] ({debits}); "
        f"{result['available_hours']}h left, service fee waived"
    )


# ── sweep ────────────────────────────────────────────────────────

@app.command()
def sweep(
    server: str = _SERVER_OPT,
    admin_key: Optional[str] = typer.Option(
        None, "--admin-key", "-k", help="Admin key.", envvar="HOURBANK_ADMIN_KEY",
    ),
) -> None:
    """Archive expired and exhausted batches on a running server.

    Example:
      hourbank sweep
      hourbank sweep -s http://billing.internal:8080 -k "$HOURBANK_ADMIN_KEY"
    """
    _run_safe(lambda: _sweep_impl(server, admin_key))


def _sweep_impl(server: str, admin_key: Optional[str]) -> None:
    result = _api_post(server, "/v1/admin/sweep", admin_key=admin_key)
    out.print(f"Archived {result['archived']} batches")


# ── serve ────────────────────────────────────────────────────────

@app.command()
def serve(
    host: str = typer.Option(
        "127.0.0.1", "--host", help="Host to bind to (default: 127.0.0.1)."
    ),
    port: int = typer.Option(
        8080, "--port", "-p", help="Port to listen on."
    ),
    allow_nonlocal: bool = typer.Option(
        False, "--allow-nonlocal",
        help="Allow binding to non-localhost addresses (use with caution).",
    ),
    reload: bool = typer.Option(
        False, "--reload", help="Enable auto-reload for development.",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output."),
) -> None:
    """Start the HTTP API server.

    Binds to 127.0.0.1 by default. Use --allow-nonlocal to override.

    Example:
      hourbank serve
      hourbank serve --port 8099 --allow-nonlocal --host 0.0.0.0
    """
    _run_safe(
        lambda: _serve_impl(host, port, allow_nonlocal, reload),
        verbose=verbose,
    )


def _serve_impl(host: str, port: int, allow_nonlocal: bool, reload: bool) -> None:
    from hourbank.core.api.server import start_server

    console.print(f"[bold]hourbank API[/bold] v{__version__} on http://{host}:{port}")
    start_server(host=host, port=port, allow_nonlocal=allow_nonlocal, reload=reload)


def _run_safe(fn, verbose: bool = False) -> None:
    """Run a function with clean error handling."""
    try:
        fn()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise SystemExit(130)
    except Exception as e:
        console.print(f"\n[red bold]Error:[/red bold] {e}")
        if verbose:
            console.print(traceback.format_exc())
        raise SystemExit(1)
