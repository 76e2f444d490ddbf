"""Escrow marketplace for buying and selling channels, groups and profiles over Telegram."""

__version__ = "0.1.0"
