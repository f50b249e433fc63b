"""Use-case level logic.

These modules implement payout reconciliation (scan, match, decompose, write)
using data returned by integrations (Stripe, Google Sheets, etc.).

They should be:
- deterministic where no collaborator is involved
- unit-testable with stub collaborators
- free of web/framework code
"""
