"""AMK Store API - game code storefront."""

__version__ = "0.1.0"
