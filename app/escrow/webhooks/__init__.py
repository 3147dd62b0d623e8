"""
Stripe webhook intake.

- handlers: event type registry and per-family handlers
- pipeline: verification, dedup, processing and audit
- views: the HTTP endpoint
"""
