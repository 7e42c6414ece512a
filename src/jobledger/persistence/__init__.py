"""Persistence — document store, event log and record serializers."""

from jobledger.persistence.event_log import EventKind, EventLog, EventRecord
from jobledger.persistence.store import STATE_FILENAME, DocumentStore, WriteBatch

__all__ = [
    "STATE_FILENAME",
    "DocumentStore",
    "EventKind",
    "EventLog",
    "EventRecord",
    "WriteBatch",
]
