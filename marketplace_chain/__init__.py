"""Marketplace chain service: connection, contract binding, retries and event subscriptions."""

__version__ = "0.1.0"
