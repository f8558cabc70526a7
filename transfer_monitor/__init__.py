"""Watchlist-filtered token transfer ingestion for EVM and Substrate chains."""

__version__ = "0.1.0"
