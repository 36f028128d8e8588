"""Persistence — ledger port, audit event log, and snapshot store."""

from agentmarket.persistence.event_log import EventKind, EventLog, EventRecord
from agentmarket.persistence.ledger import (
    Entry,
    InMemoryLedger,
    Ledger,
    PendingEvent,
    Put,
    Transaction,
    Transfer,
)
from agentmarket.persistence.state_store import StateStore

__all__ = [
    "Entry",
    "EventKind",
    "EventLog",
    "EventRecord",
    "InMemoryLedger",
    "Ledger",
    "PendingEvent",
    "Put",
    "StateStore",
    "Transaction",
    "Transfer",
]
