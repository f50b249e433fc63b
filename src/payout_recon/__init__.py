"""Stripe payout reconciliation against a Google Sheets ledger."""
