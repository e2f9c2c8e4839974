"""Smart Signal - Storage Package"""

from .event_store import SqliteEventStore, EventStoreError

__all__ = ['SqliteEventStore', 'EventStoreError']
