"""Shyftcut subscription entitlements and usage limits backend."""

__version__ = "1.0.0"
