"""Single-product storefront: Stripe checkout and webhook order reconciliation."""

__version__ = "0.1.0"
