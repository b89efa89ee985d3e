"""Persisted record store."""

from dylink.db.connection import Database
from dylink.db.records import RecordStore, record_key

__all__ = ["Database", "RecordStore", "record_key"]
