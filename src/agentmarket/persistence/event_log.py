"""Append-only event log — the audit trail of every committed submission.

Every ledger commit produces one event record per emitted event. Events
are immutable once written and carry a SHA-256 hash over their canonical
JSON form. The log can be persisted as JSONL and is verified on load:
tampered records and replayed event IDs are rejected (fail closed).
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional


class EventKind(str, enum.Enum):
    """Classification of marketplace events."""
    # Job lifecycle
    JOB_CREATED = "job_created"
    JOB_FUNDED = "job_funded"
    JOB_TRANSITION = "job_transition"
    # Bidding
    BID_SUBMITTED = "bid_submitted"
    BID_SELECTED = "bid_selected"
    BID_WITHDRAWN = "bid_withdrawn"
    # Disputes and arbitration
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    ARBITRATOR_REGISTERED = "arbitrator_registered"
    ARBITRATOR_STAKED = "arbitrator_staked"
    ARBITRATOR_STATUS_CHANGED = "arbitrator_status_changed"
    ARBITRATOR_UNSTAKE_REQUESTED = "arbitrator_unstake_requested"
    ARBITRATOR_UNSTAKE_WITHDRAWN = "arbitrator_unstake_withdrawn"
    ARBITRATOR_UNSTAKE_CANCELLED = "arbitrator_unstake_cancelled"
    # Validators, validations, challenges
    VALIDATOR_REGISTERED = "validator_registered"
    VALIDATOR_UPDATED = "validator_updated"
    VALIDATOR_STAKED = "validator_staked"
    VALIDATOR_UNSTAKE_REQUESTED = "validator_unstake_requested"
    VALIDATOR_UNSTAKE_WITHDRAWN = "validator_unstake_withdrawn"
    VALIDATOR_UNSTAKE_CANCELLED = "validator_unstake_cancelled"
    VALIDATOR_SLASHED = "validator_slashed"
    VALIDATION_SUBMITTED = "validation_submitted"
    CHALLENGE_OPENED = "challenge_opened"
    CHALLENGE_FUNDED = "challenge_funded"
    CHALLENGE_CANCELLED = "challenge_cancelled"
    CHALLENGE_RESOLVED = "challenge_resolved"
    # Agents and feedback
    AGENT_REGISTERED = "agent_registered"
    AGENT_STATUS_CHANGED = "agent_status_changed"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    FEEDBACK_DISPUTED = "feedback_disputed"
    FEEDBACK_DISPUTE_RESOLVED = "feedback_dispute_resolved"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the audit log.

    The event_hash is computed at creation time over the canonical JSON
    of every other field.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted. With a
    storage path, each batch is written to a JSONL file (one JSON object
    per line) and loaded back for recovery.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append one event. Raises ValueError on a duplicate event_id."""
        self.append_many([event])

    def append_many(self, events: Iterable[EventRecord]) -> None:
        """Append a batch of events, all or nothing.

        Duplicate IDs (against the log or within the batch) are rejected
        before anything is written. The file write is a single call, so
        an OSError leaves the in-memory log untouched.
        """
        batch = list(events)
        seen: set[str] = set()
        for event in batch:
            if event.event_id in self._event_ids or event.event_id in seen:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            seen.add(event.event_id)

        if self._storage_path and batch:
            self._append_to_file(batch)

        self._events.extend(batch)
        self._event_ids.update(seen)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, batch: list[EventRecord]) -> None:
        lines = "".join(
            json.dumps(e.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
            for e in batch
        )
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(lines)

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
