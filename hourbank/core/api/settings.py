"""Centralized server settings for the hourbank API.

Reads HOURBANK_* environment variables with sensible defaults. Distinguishes
dev vs prod mode. Never exposes secrets in repr or serialization.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_DATA_DIR = str(Path.home() / ".hourbank")


def _bool_env(key: str, default: bool) -> bool:
    """Parse a 0/1 env var to bool."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.strip() in ("1", "true", "yes", "True", "TRUE")


def _int_env(key: str, default: int) -> int:
    """Parse an int env var with fallback."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _float_env(key: str, default: float) -> float:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable server configuration. Safe to log, the admin key is masked."""

    # ── Core ───────────────────────────────────────────────────────
    env: str = "dev"
    bind: str = "127.0.0.1"
    port: int = 8080
    allow_nonlocal: bool = False
    enable_docs: bool = True

    # ── Persistence ────────────────────────────────────────────────
    data_dir: str = DEFAULT_DATA_DIR
    ledger_persist: bool = True
    intents_persist: bool = True

    # ── Pricing ────────────────────────────────────────────────────
    pricing_config_path: str = ""
    quote_ttl_seconds: float = 900.0

    # ── Credits ────────────────────────────────────────────────────
    max_redeem_retries: int = 5

    # ── Payments ───────────────────────────────────────────────────
    payment_timeout_seconds: float = 30.0
    stripe_enabled: bool = False

    # ── Logging ────────────────────────────────────────────────────
    log_format: str = "text"

    # ── Admin ──────────────────────────────────────────────────────
    admin_key: str = ""

    def __repr__(self) -> str:
        return (
            f"Settings(env={self.env!r}, bind={self.bind!r}, port={self.port}, "
            f"allow_nonlocal={self.allow_nonlocal}, enable_docs={self.enable_docs}, "
            f"data_dir={self.data_dir!r}, ledger_persist={self.ledger_persist}, "
            f"intents_persist={self.intents_persist}, "
            f"admin_key={'***' if self.admin_key else ''!r}, "
            f"log_format={self.log_format!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict with admin_key masked."""
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["admin_key"] = "configured" if self.admin_key else "not set"
        d["pricing_config_path"] = self.pricing_config_path or "defaults"
        return d


def load_settings(
    bind: Optional[str] = None,
    port: Optional[int] = None,
    allow_nonlocal: Optional[bool] = None,
    **overrides: Any,
) -> Settings:
    """Load settings from environment with optional overrides.

    Args:
        bind: Override bind host
        port: Override port
        allow_nonlocal: Override nonlocal binding check
        **overrides: Additional field overrides

    Returns:
        Settings instance
    """
    env = overrides.get("env", os.environ.get("HOURBANK_ENV", "dev"))
    values: Dict[str, Any] = dict(
        env=os.environ.get("HOURBANK_ENV", "dev"),
        bind=os.environ.get("HOURBANK_BIND", "127.0.0.1"),
        port=_int_env("HOURBANK_PORT", 8080),
        allow_nonlocal=_bool_env("HOURBANK_ALLOW_NONLOCAL", False),
        enable_docs=_bool_env("HOURBANK_ENABLE_DOCS", env != "prod"),
        data_dir=os.environ.get("HOURBANK_DATA_DIR", DEFAULT_DATA_DIR),
        ledger_persist=_bool_env("HOURBANK_LEDGER_PERSIST", True),
        intents_persist=_bool_env("HOURBANK_INTENTS_PERSIST", True),
        pricing_config_path=os.environ.get("HOURBANK_PRICING_CONFIG", ""),
        quote_ttl_seconds=_float_env("HOURBANK_QUOTE_TTL_SECONDS", 900.0),
        max_redeem_retries=_int_env("HOURBANK_MAX_REDEEM_RETRIES", 5),
        payment_timeout_seconds=_float_env("HOURBANK_PAYMENT_TIMEOUT_SECONDS", 30.0),
        stripe_enabled=_bool_env("HOURBANK_STRIPE_ENABLED", False),
        log_format=os.environ.get("HOURBANK_LOG_FORMAT", "text"),
        admin_key=os.environ.get("HOURBANK_ADMIN_KEY", ""),
    )

    if bind is not None:
        values["bind"] = bind
    if port is not None:
        values["port"] = port
    if allow_nonlocal is not None:
        values["allow_nonlocal"] = allow_nonlocal

    values.update(overrides)
    return Settings(**values)


def validate_host(host: str, allow_nonlocal: bool) -> None:
    """Refuse to bind to non-localhost unless explicitly allowed."""
    local_hosts = {"127.0.0.1", "localhost", "::1"}
    if host not in local_hosts and not allow_nonlocal:
        raise ValueError(
            f"Refusing to bind to non-local host '{host}'. "
            f"Pass --allow-nonlocal to override this safety check."
        )


def check_persistence(settings: Settings) -> None:
    """Refuse to run production with the ledger or intents in memory only."""
    if settings.env != "prod":
        return
    missing = [
        name
        for name, enabled in (
            ("HOURBANK_LEDGER_PERSIST", settings.ledger_persist),
            ("HOURBANK_INTENTS_PERSIST", settings.intents_persist),
        )
        if not enabled
    ]
    if missing:
        raise ValueError(
            f"Refusing to start in prod with persistence disabled ({', '.join(missing)}). "
            f"Credit batches and purchase intents would be lost on restart."
        )


def print_startup_warnings(settings: Settings) -> None:
    """Print warnings about potentially unsafe settings."""
    warnings = []

    if not settings.admin_key:
        warnings.append("No admin key configured; admin endpoints are open to all requests.")

    if settings.allow_nonlocal:
        warnings.append(
            "Non-local binding enabled; ensure you have proper firewall rules."
        )

    if not settings.ledger_persist:
        warnings.append("Ledger persistence is off; credit batches live in memory only.")

    if not settings.intents_persist:
        warnings.append("Intent persistence is off; pending purchases are lost on restart.")

    if settings.env == "prod" and not settings.stripe_enabled:
        warnings.append("Production mode with the mock payment client.")

    if warnings:
        import click

        click.secho("\nWarnings:", fg="yellow")
        for w in warnings:
            click.secho(f"  • {w}", fg="yellow")
        click.echo()
