"""Garimpo: affiliate offer catalog and profitability calculator."""

__version__ = "0.1.0"
