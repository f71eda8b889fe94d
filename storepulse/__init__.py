"""StorePulse: multi-tenant Shopify sync and analytics backend."""

__version__ = "0.1.0"
