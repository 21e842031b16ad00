"""Durable discovery/scan state."""

from npmsentinel.state.store import DiscoveryStore, StoreStats

__all__ = ["DiscoveryStore", "StoreStats"]
