"""Persistent storage for raw events and projected state."""

from stfuel_tracker.storage.sqlite import RAW_TABLES, SQLiteStore, StoreSession

__all__ = ["RAW_TABLES", "SQLiteStore", "StoreSession"]
