"""Prepaid-hour credit ledger."""
