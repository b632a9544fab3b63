"""Persistence module for market data, levels, setups and patterns."""

from .database import MarketStore, StoreError

__all__ = ["MarketStore", "StoreError"]
