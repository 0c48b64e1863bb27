"""Liquidity-provider reward engine for the two-protocol, three-pair reward game."""

__version__ = "0.1.0"
