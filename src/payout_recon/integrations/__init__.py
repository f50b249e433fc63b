"""Integration adapters for external systems (Stripe, Google Sheets/Drive/Gmail).

Keep these modules small and testable:
- No FastAPI request/response objects
- No reconciliation decisions
- Pure IO + parsing helpers
"""
