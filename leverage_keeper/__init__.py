"""Leverage keeper: health monitoring, yield harvesting, liquidation and settlement."""

__version__ = "0.1.0"
