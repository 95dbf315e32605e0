"""Metered-usage reconciliation pipeline."""
