"""Ledger sync and integration diagnostics service for reseller bookkeeping."""

__all__: list[str] = []
