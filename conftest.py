"""Repo-wide test fixtures.

Snapshots and restores hourbank environment variables between tests
to prevent cross-module pollution from module-level os.environ mutations.
"""

from __future__ import annotations

import os

import pytest

_SENSITIVE_ENV_VARS = [
    "HOURBANK_ENV",
    "HOURBANK_ADMIN_KEY",
    "HOURBANK_ALLOW_NONLOCAL",
    "HOURBANK_DATA_DIR",
    "HOURBANK_LEDGER_PERSIST",
    "HOURBANK_INTENTS_PERSIST",
    "HOURBANK_PRICING_CONFIG",
    "HOURBANK_LOG_FORMAT",
    "HOURBANK_PAYMENT_TIMEOUT_SECONDS",
    "HOURBANK_QUOTE_TTL_SECONDS",
    "HOURBANK_MAX_REDEEM_RETRIES",
    "HOURBANK_STRIPE_ENABLED",
    "HOURBANK_SERVER_URL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
]


@pytest.fixture(autouse=True)
def _restore_env():
    """Snapshot sensitive env vars before each test and restore after."""
    snapshot = {}
    for var in _SENSITIVE_ENV_VARS:
        val = os.environ.get(var)
        if val is not None:
            snapshot[var] = val

    yield

    # Restore: remove any that were added, reset any that changed
    for var in _SENSITIVE_ENV_VARS:
        if var in snapshot:
            os.environ[var] = snapshot[var]
        else:
            os.environ.pop(var, None)
