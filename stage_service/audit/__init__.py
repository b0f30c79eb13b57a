"""Audit Log — append-only config history and change feed."""
from .config_history import ConfigHistoryHandler, ConfigHistoryEntry, ChangeFeedEntry

__all__ = ["ConfigHistoryHandler", "ConfigHistoryEntry", "ChangeFeedEntry"]
