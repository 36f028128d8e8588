"""Tests for the ledger — proves commits are atomic, versioned and recoverable."""

import threading
from pathlib import Path

import pytest

from agentmarket.errors import LedgerConflict, LedgerUnavailable
from agentmarket.persistence.event_log import EventKind, EventLog
from agentmarket.persistence.ledger import InMemoryLedger, Transaction
from agentmarket.persistence.state_store import StateStore

NOW = 1_700_000_000


def _txn(actor: str = "alice") -> Transaction:
    return Transaction(actor_id=actor, timestamp=NOW)


def _seed(ledger: InMemoryLedger) -> None:
    txn = _txn()
    txn.put("things", 1, {"name": "first"}, 0)
    txn.transfer("alice", "escrow.jobs", 500, memo="seed")
    txn.emit(EventKind.JOB_CREATED, {"job_id": 1})
    ledger.commit(txn)


class _FailingEventLog(EventLog):
    def append_many(self, events) -> None:
        raise OSError("disk full")


class _FailingStateStore(StateStore):
    def save(self, snapshot) -> None:
        raise OSError("read-only filesystem")


class TestCommit:
    def test_puts_transfers_and_events_applied_together(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        entry = ledger.read("things", 1)
        assert entry.value == {"name": "first"}
        assert entry.version == 1
        assert ledger.balance("alice") == -500
        assert ledger.balance("escrow.jobs") == 500
        assert ledger.event_log.count == 1
        assert ledger.commit_count == 1

    def test_versions_increase(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        txn = _txn()
        txn.put("things", 1, {"name": "second"}, 1)
        ledger.commit(txn)
        assert ledger.read("things", 1).version == 2

    def test_stale_version_rejects_everything(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        txn = _txn()
        txn.put("things", 2, {"name": "new"}, 0)
        txn.put("things", 1, {"name": "stale"}, 0)
        txn.transfer("escrow.jobs", "bob", 500)
        txn.emit(EventKind.JOB_TRANSITION, {"job_id": 1})
        with pytest.raises(LedgerConflict):
            ledger.commit(txn)
        assert ledger.read("things", 2) is None
        assert ledger.read("things", 1).value == {"name": "first"}
        assert ledger.balance("bob") == 0
        assert ledger.event_log.count == 1
        assert ledger.commit_count == 1

    def test_double_write_in_one_transaction(self) -> None:
        ledger = InMemoryLedger()
        txn = _txn()
        txn.put("things", 1, {"a": 1}, 0)
        txn.put("things", 1, {"a": 2}, 0)
        with pytest.raises(ValueError):
            ledger.commit(txn)

    def test_zero_transfer_is_skipped(self) -> None:
        txn = _txn()
        txn.transfer("alice", "bob", 0)
        assert txn.transfers == []

    @pytest.mark.parametrize("sender,recipient,amount", [
        ("alice", "bob", -1),
        ("alice", "alice", 10),
    ])
    def test_malformed_transfer(self, sender: str, recipient: str, amount: int) -> None:
        ledger = InMemoryLedger()
        txn = _txn()
        txn.transfer(sender, recipient, amount)
        with pytest.raises(ValueError):
            ledger.commit(txn)
        assert ledger.transfers() == []

    def test_balances_sum_to_zero(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        txn = _txn()
        txn.transfer("escrow.jobs", "bob", 300)
        txn.transfer("escrow.jobs", "platform", 200)
        ledger.commit(txn)
        accounts = ("alice", "bob", "platform", "escrow.jobs")
        assert sum(ledger.balance(a) for a in accounts) == 0
        assert len(ledger.transfers("escrow.jobs")) == 3

    def test_event_ids_are_sequential(self) -> None:
        ledger = InMemoryLedger()
        txn = _txn()
        txn.emit(EventKind.JOB_CREATED, {"job_id": 1})
        txn.emit(EventKind.JOB_FUNDED, {"job_id": 1})
        ledger.commit(txn)
        assert [e.event_id for e in ledger.event_log.events()] == ["EVT-00000001", "EVT-00000002"]
        assert ledger.event_log.last_event.timestamp_utc == "2023-11-14T22:13:20Z"

    def test_next_id_never_reused(self) -> None:
        ledger = InMemoryLedger()
        assert [ledger.next_id("jobs") for _ in range(3)] == [1, 2, 3]
        assert ledger.next_id("bids") == 1

    def test_reads_are_copies(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        ledger.read("things", 1).value["name"] = "mutated"
        assert ledger.read("things", 1).value == {"name": "first"}

    def test_concurrent_writers_one_wins(self) -> None:
        ledger = InMemoryLedger()
        _seed(ledger)
        outcomes: list[str] = []
        barrier = threading.Barrier(2)

        def writer(name: str) -> None:
            txn = _txn(name)
            txn.put("things", 1, {"name": name}, 1)
            barrier.wait()
            try:
                ledger.commit(txn)
                outcomes.append("ok")
            except LedgerConflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=writer, args=(n,)) for n in ("w1", "w2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(outcomes) == ["conflict", "ok"]


class TestAuditFailure:
    def test_event_log_failure_rejects_submission(self) -> None:
        ledger = InMemoryLedger(event_log=_FailingEventLog())
        txn = _txn()
        txn.put("things", 1, {"name": "first"}, 0)
        txn.transfer("alice", "escrow.jobs", 500)
        txn.emit(EventKind.JOB_CREATED, {"job_id": 1})
        with pytest.raises(LedgerUnavailable):
            ledger.commit(txn)
        assert ledger.read("things", 1) is None
        assert ledger.balance("escrow.jobs") == 0
        assert ledger.commit_count == 0

    def test_snapshot_failure_degrades_but_commits(self, tmp_path: Path) -> None:
        ledger = InMemoryLedger(state_store=_FailingStateStore(tmp_path / "state.json"))
        _seed(ledger)
        assert ledger.persistence_degraded
        assert ledger.read("things", 1) is not None
        assert ledger.event_log.count == 1


class TestRecovery:
    def test_state_store_round_trip(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        ledger = InMemoryLedger(state_store=store)
        ledger.next_id("things")
        _seed(ledger)

        restored = InMemoryLedger(state_store=StateStore(tmp_path / "state.json"))
        assert restored.read("things", 1).value == {"name": "first"}
        assert restored.read("things", 1).version == 1
        assert restored.balance("escrow.jobs") == 500
        assert restored.commit_count == 1
        assert restored.next_id("things") == 2
        assert not restored.persistence_degraded

    def test_missing_snapshot_starts_empty(self, tmp_path: Path) -> None:
        ledger = InMemoryLedger(state_store=StateStore(tmp_path / "nothing.json"))
        assert ledger.scan("things") == []

    def test_non_object_snapshot_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(ValueError):
            InMemoryLedger(state_store=StateStore(path))

    def test_event_numbering_continues_after_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        _seed(InMemoryLedger(event_log=EventLog(path)))

        ledger = InMemoryLedger(event_log=EventLog(path))
        txn = _txn()
        txn.emit(EventKind.JOB_FUNDED, {"job_id": 1})
        ledger.commit(txn)
        assert ledger.event_log.last_event.event_id == "EVT-00000002"
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
