"""Curlara payment-to-entitlement reconciler."""

__version__ = "0.1.0"
