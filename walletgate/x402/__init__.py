# walletgate/x402/__init__.py
"""
x402 pay-per-access integration.

Key components:
- access: Free / owner / purchased / unpaid decision for a content entry
- payment_required: HTTP 402 responses built from payment instructions
- wallet_auth: Wallet signature authentication dependencies for routes

Configuration is loaded from environment variables via walletgate.core.config.
"""

__version__ = "0.1.0"
