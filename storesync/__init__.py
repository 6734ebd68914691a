"""
Storefront Sync Engine

Mirrors customers, products and orders from connected storefronts into a
per-tenant store, via scheduled bulk polling and real-time webhooks.
"""

__version__ = "1.0.0"
