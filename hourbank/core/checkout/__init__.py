"""Package checkout: purchase intents, payment boundary, orchestration."""
