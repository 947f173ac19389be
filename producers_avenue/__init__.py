"""Producers Avenue marketplace API: orders, wallets, payouts and payment webhooks."""

__version__ = "0.1.0"
