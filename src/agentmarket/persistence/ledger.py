"""Ledger port and the in-memory reference ledger.

The ledger is the sole source of truth. Engines read entities by key,
build one Transaction describing every write, transfer and audit event
a command implies, and submit it with commit(). A commit is
all-or-nothing:

1. Version check. Every Put names the version it was computed from
   (0 = "must not exist"). Any mismatch rejects the whole submission
   with LedgerConflict; nothing is applied.
2. Audit. Events are appended to the EventLog. If that fails the
   submission is rejected with LedgerUnavailable; nothing is applied.
3. Apply. Puts and transfers are applied together under one lock.
4. Snapshot. With a StateStore, the full state is saved. A failure here
   does NOT roll back (the audit record is already durable); the ledger
   flags persistence_degraded instead.

Conflicting submissions are serialized by the commit lock, so of two
concurrent commands computed from the same entity version exactly one
commits.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Union

from agentmarket.errors import LedgerConflict, LedgerUnavailable
from agentmarket.persistence.codec import to_record
from agentmarket.persistence.event_log import EventKind, EventLog, EventRecord
from agentmarket.persistence.state_store import StateStore

logger = logging.getLogger(__name__)

Key = Union[int, str]


@dataclass(frozen=True)
class Entry:
    """A stored value and its version (1 on first write)."""
    key: Key
    value: dict[str, Any]
    version: int


@dataclass(frozen=True)
class Put:
    table: str
    key: Key
    value: dict[str, Any]
    expected_version: int


@dataclass(frozen=True)
class Transfer:
    sender: str
    recipient: str
    amount: int
    memo: str = ""


@dataclass(frozen=True)
class PendingEvent:
    kind: EventKind
    actor_id: str
    payload: dict[str, Any]


@dataclass
class Transaction:
    """One atomic submission: entity writes, fund movements, audit events."""
    actor_id: str
    timestamp: int
    puts: list[Put] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)
    events: list[PendingEvent] = field(default_factory=list)

    def put(self, table: str, key: Key, entity: Any, expected_version: int) -> None:
        """Stage a write of a dataclass entity (or a plain dict)."""
        value = entity if isinstance(entity, dict) else to_record(entity)
        self.puts.append(Put(table, key, value, expected_version))

    def transfer(self, sender: str, recipient: str, amount: int, memo: str = "") -> None:
        """Stage a fund movement. Zero amounts are skipped."""
        if amount == 0:
            return
        self.transfers.append(Transfer(sender, recipient, amount, memo))

    def emit(
        self,
        kind: EventKind,
        payload: dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> None:
        self.events.append(PendingEvent(kind, actor_id or self.actor_id, payload))


class Ledger(Protocol):
    """Storage port the engines depend on."""

    def read(self, table: str, key: Key) -> Optional[Entry]:
        ...

    def scan(self, table: str) -> list[Entry]:
        ...

    def next_id(self, table: str) -> int:
        ...

    def commit(self, txn: Transaction) -> int:
        ...

    def balance(self, account: str) -> int:
        ...

    def transfers(self, account: Optional[str] = None) -> list[Transfer]:
        ...


class InMemoryLedger:
    """Thread-safe in-memory ledger with optional durable audit and snapshot.

    Usage:
        ledger = InMemoryLedger()
        ledger = InMemoryLedger(
            event_log=EventLog(data_dir / "events.jsonl"),
            state_store=StateStore(data_dir / "state.json"),
        )
    """

    def __init__(
        self,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, dict[Key, Entry]] = {}
        self._counters: dict[str, int] = {}
        self._transfers: list[Transfer] = []
        self._balances: dict[str, int] = {}
        self._commit_seq = 0
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store
        # Continue numbering from a persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

        # Set when a snapshot write fails after the audit event is durable.
        # In-memory state stays correct; the StateStore is stale.
        self.persistence_degraded: bool = False

        if state_store is not None:
            snapshot = state_store.load()
            if snapshot is not None:
                self._restore(snapshot)

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def commit_count(self) -> int:
        return self._commit_seq

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, table: str, key: Key) -> Optional[Entry]:
        with self._lock:
            entry = self._tables.get(table, {}).get(key)
            return copy.deepcopy(entry) if entry is not None else None

    def scan(self, table: str) -> list[Entry]:
        with self._lock:
            entries = list(self._tables.get(table, {}).values())
            return sorted(copy.deepcopy(entries), key=lambda e: e.key)

    def next_id(self, table: str) -> int:
        """Allocate the next id for a table. Ids are never reused."""
        with self._lock:
            self._counters[table] = self._counters.get(table, 0) + 1
            return self._counters[table]

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfers(self, account: Optional[str] = None) -> list[Transfer]:
        with self._lock:
            if account is None:
                return list(self._transfers)
            return [
                t for t in self._transfers
                if account in (t.sender, t.recipient)
            ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit(self, txn: Transaction) -> int:
        """Apply a transaction atomically. Returns the commit sequence number.

        Raises LedgerConflict on a stale version, LedgerUnavailable if the
        audit trail cannot be written. In both cases nothing is applied.
        """
        with self._lock:
            touched: set[tuple[str, Key]] = set()
            for put in txn.puts:
                if (put.table, put.key) in touched:
                    raise ValueError(
                        f"Transaction writes {put.table}/{put.key} more than once"
                    )
                touched.add((put.table, put.key))
                current = self._tables.get(put.table, {}).get(put.key)
                current_version = current.version if current is not None else 0
                if current_version != put.expected_version:
                    logger.warning(
                        "Ledger conflict on %s/%s: expected version %d, found %d",
                        put.table, put.key, put.expected_version, current_version,
                    )
                    raise LedgerConflict(
                        f"Conflicting write to {put.table}/{put.key}: "
                        f"expected version {put.expected_version}, "
                        f"found {current_version}"
                    )
            for t in txn.transfers:
                if t.amount <= 0:
                    raise ValueError(f"Transfer amount must be positive, got {t.amount}")
                if t.sender == t.recipient:
                    raise ValueError(f"Transfer to self: {t.sender}")

            ts = datetime.fromtimestamp(txn.timestamp, timezone.utc)
            records = [
                EventRecord.create(
                    event_id=f"EVT-{self._event_counter + i:08d}",
                    event_kind=ev.kind,
                    actor_id=ev.actor_id,
                    payload=ev.payload,
                    timestamp_utc=ts,
                )
                for i, ev in enumerate(txn.events, 1)
            ]
            try:
                self._event_log.append_many(records)
            except (ValueError, OSError) as e:
                logger.error("Audit trail write failed, submission rejected: %s", e)
                raise LedgerUnavailable(f"Event log failure: {e}") from e
            self._event_counter += len(records)

            for put in txn.puts:
                self._tables.setdefault(put.table, {})[put.key] = Entry(
                    key=put.key,
                    value=copy.deepcopy(put.value),
                    version=put.expected_version + 1,
                )
            for t in txn.transfers:
                self._apply_transfer(t)

            self._commit_seq += 1
            logger.debug(
                "Commit %d by %s: %d puts, %d transfers, %d events",
                self._commit_seq, txn.actor_id,
                len(txn.puts), len(txn.transfers), len(records),
            )
            self._persist()
            return self._commit_seq

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Full state as a JSON-compatible dict."""
        with self._lock:
            return {
                "commit_seq": self._commit_seq,
                "counters": dict(self._counters),
                "tables": {
                    table: [
                        [e.key, copy.deepcopy(e.value), e.version]
                        for e in entries.values()
                    ]
                    for table, entries in self._tables.items()
                },
                "transfers": [
                    [t.sender, t.recipient, t.amount, t.memo]
                    for t in self._transfers
                ],
            }

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._commit_seq = snapshot.get("commit_seq", 0)
        self._counters = dict(snapshot.get("counters", {}))
        for table, rows in snapshot.get("tables", {}).items():
            self._tables[table] = {
                key: Entry(key=key, value=value, version=version)
                for key, value, version in rows
            }
        for sender, recipient, amount, memo in snapshot.get("transfers", []):
            self._apply_transfer(Transfer(sender, recipient, amount, memo))

    def _apply_transfer(self, t: Transfer) -> None:
        self._transfers.append(t)
        self._balances[t.sender] = self._balances.get(t.sender, 0) - t.amount
        self._balances[t.recipient] = self._balances.get(t.recipient, 0) + t.amount

    def _persist(self) -> None:
        """Save a snapshot after the audit trail is durable. Never rolls back."""
        if self._state_store is None:
            return
        try:
            self._state_store.save(self.snapshot())
        except OSError as e:
            self.persistence_degraded = True
            logger.error(
                "Persistence degraded: %s — state committed in audit trail "
                "but StateStore is stale", e,
            )
