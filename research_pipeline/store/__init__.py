"""Durable storage for pipeline entities."""

from .database import Base, MEMORY_URL, create_db_engine, init_db
from .item_store import ARTIFACT_TRANSITIONS, ItemStore, can_transition

__all__ = [
    "ARTIFACT_TRANSITIONS",
    "Base",
    "ItemStore",
    "MEMORY_URL",
    "can_transition",
    "create_db_engine",
    "init_db",
]
