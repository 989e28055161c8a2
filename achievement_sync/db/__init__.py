"""Record storage"""
from achievement_sync.db.store import RecordStore
from achievement_sync.db.memory_store import InMemoryRecordStore

__all__ = ["RecordStore", "InMemoryRecordStore"]
