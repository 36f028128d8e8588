"""Tests for the market service — proves the command boundary and full scenarios."""

import logging
from pathlib import Path

import pytest

from agentmarket import __version__
from agentmarket.identity.oracle import StaticIdentityOracle
from agentmarket.persistence.codec import ESCROW_JOBS, ESCROW_VALIDATORS
from agentmarket.persistence.ledger import Transaction
from agentmarket.policy.resolver import PolicyResolver
from agentmarket.service import EVENTS_FILENAME, STATE_FILENAME, MarketService, ServiceResult

NOW = 1_700_000_000
DAY = 86_400
CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _resolver() -> PolicyResolver:
    return PolicyResolver.from_params({
        "escrow": {"min_job_amount": 1},
        "arbitration": {"min_stake": 1_000},
        "validation": {"min_stake": 1_000, "challenge_stake": 100},
    })


@pytest.fixture
def service() -> MarketService:
    svc = MarketService(_resolver())
    assert svc.register_agent("agent-a", "Agent A", now=NOW).success
    assert svc.register_agent("agent-b", "Agent B", now=NOW).success
    return svc


def _hire(svc: MarketService, amount: int = 1000, arbitrator=None) -> int:
    result = svc.create_job(
        "alice", "Audit", "Audit the contract", ["report.md"], amount,
        agent="agent-a", arbitrator=arbitrator, now=NOW,
    )
    assert result.success, result.errors
    job_id = result.data["job_id"]
    assert svc.fund_job(job_id, amount, "alice", now=NOW).success
    return job_id


class TestServiceResult:
    def test_rejection_carries_error_code(self, service: MarketService) -> None:
        result = service.create_job("alice", "", "Desc", ["r"], 1000, now=NOW)
        assert not result.success
        assert result.error_code == "InvalidArgument"
        assert result.errors
        assert result.data == {}

    def test_query_not_found(self, service: MarketService) -> None:
        result = service.get_job(404)
        assert not result.success
        assert result.error_code == "NotFound"

    def test_success_has_no_error_code(self, service: MarketService) -> None:
        result = service.get_agent("agent-a")
        assert result.success
        assert result.error_code is None
        assert result.data["name"] == "Agent A"

    def test_results_are_frozen(self) -> None:
        result = ServiceResult(success=True)
        with pytest.raises(AttributeError):
            result.success = False  # type: ignore[misc]

    def test_malformed_profile_is_a_typed_rejection(self, service: MarketService) -> None:
        result = service.register_agent("agent-c", "Agent C", description=42, now=NOW)
        assert not result.success
        assert result.error_code == "InvalidArgument"
        assert service.register_agent("agent-c", "Agent C", description=None, now=NOW).success

    def test_non_bool_flag_is_a_typed_rejection(self, service: MarketService) -> None:
        result = service.set_arbitrator_active("judge", "no", now=NOW)
        assert result.error_code == "InvalidArgument"

    def test_rejections_are_logged(self, service: MarketService, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="agentmarket.service"):
            service.accept_job(99, "agent-a", now=NOW)
        assert "Rejected accept_job [NotFound]" in caplog.text


class TestScenarios:
    def test_bid_selection(self, service: MarketService) -> None:
        job_id = service.create_job("alice", "Audit", "Desc", ["r"], 1000, now=NOW).data["job_id"]
        bid = service.submit_bid(job_id, "agent-a", 900, 7 * DAY, "I can do it", now=NOW)
        service.submit_bid(job_id, "agent-b", 950, 7 * DAY, "Me too", now=NOW)

        result = service.select_bid(bid.data["bid_id"], caller="alice", now=NOW)

        assert result.success
        assert result.data["state"] == "funded"
        assert result.data["amount"] == 900
        assert service.list_bids(job_id, active_only=True).data["items"][0]["agent"] == "agent-a"
        assert service.ledger.balance(ESCROW_JOBS) == 900

    def test_happy_path(self, service: MarketService) -> None:
        job_id = _hire(service)
        assert service.accept_job(job_id, "agent-a", now=NOW).success
        assert service.start_job(job_id, "agent-a", now=NOW).success
        assert service.deliver_job(job_id, "agent-a", "ipfs://out", now=NOW).success
        result = service.approve_delivery(job_id, "alice", now=NOW)
        assert result.data["state"] == "completed"
        assert service.ledger.balance("agent-a") == 990
        assert service.check_invariants().success

    def test_dispute_and_arbitration(self, service: MarketService) -> None:
        assert service.register_arbitrator("judge", 0, now=NOW).success
        assert service.stake_arbitrator("judge", 1_000, now=NOW).success
        assert service.set_arbitrator_active("judge", True, now=NOW).success
        job_id = _hire(service, 500, arbitrator="judge")
        service.accept_job(job_id, "agent-a", now=NOW)
        service.deliver_job(job_id, "agent-a", "ipfs://out", now=NOW)
        dispute = service.raise_dispute(job_id, "alice", "Incomplete", now=NOW + 1)
        assert dispute.success

        result = service.arbitrate(dispute.data["dispute_id"], "judge", 70, "Mostly missing", now=NOW + 2)

        assert result.success, result.errors
        assert result.data["client_amount"] == 350
        assert result.data["agent_amount"] == 150
        assert service.get_job(job_id).data["state"] == "arbitrated"
        assert service.list_disputes(pending_only=True).data["items"] == []
        assert service.check_invariants().success

    def test_validation_challenge(self, service: MarketService) -> None:
        service.register_validator("val-1", "static analysis", ["solidity"], now=NOW)
        service.stake_validator("val-1", 1_000, now=NOW)
        assert service.set_validator_active("val-1", True, now=NOW).success
        validation = service.submit_validation("val-1", "agent-a", "0xabc", "fail", 80, now=NOW)
        assert validation.success

        challenge = service.challenge_validation(
            "carol", validation.data["validation_id"], "Passes locally",
            stake_amount=100, now=NOW + 1,
        )
        assert challenge.success
        resolved = service.resolve_challenge(
            "platform", challenge.data["challenge_id"], True, "Validator erred", now=NOW + 2,
        )

        assert resolved.data["status"] == "upheld"
        validator = service.get_validator("val-1").data
        assert validator["stake"] == 900
        assert not validator["active"]
        assert service.ledger.balance(ESCROW_VALIDATORS) == 900
        assert service.check_invariants().success

    def test_feedback_dispute(self, service: MarketService) -> None:
        service.submit_feedback("bob", "agent-a", 1, now=NOW)
        feedback_id = service.list_feedback("agent-a").data["items"][0]["feedback_id"]

        dispute = service.dispute_feedback("agent-a", feedback_id, "Never hired me", now=NOW + 1)
        assert dispute.success
        assert service.list_feedback("agent-a").data["items"][0]["disputed"]
        resolved = service.resolve_feedback_dispute(
            "platform", dispute.data["dispute_id"], True, "No such job", now=NOW + 2,
        )

        assert resolved.data["status"] == "upheld"
        assert service.get_feedback_dispute(dispute.data["dispute_id"]).data["resolver"] == "platform"
        assert service.list_feedback_disputes(pending_only=True).data["items"] == []
        assert service.get_trust_score("agent-a", now=NOW).data["breakdown"]["reputation"] == 0

    def test_unstake_request_lookup(self, service: MarketService) -> None:
        service.register_validator("val-1", "static analysis", now=NOW)
        service.stake_validator("val-1", 1_000, now=NOW)
        service.unstake_validator("val-1", 1_000, now=NOW)

        pending = service.list_unstake_requests("val-1").data["items"]
        assert [r["status"] for r in pending] == ["pending"]
        result = service.withdraw_unstake("val-1", pending[0]["request_id"], now=NOW + 7 * DAY)

        assert result.success
        assert service.ledger.balance("val-1") == 0
        assert service.list_arbitrator_unstake_requests("val-1").data["items"] == []

    def test_slash_validator(self, service: MarketService) -> None:
        service.register_validator("val-1", "static analysis", now=NOW)
        service.stake_validator("val-1", 1_000, now=NOW)
        rejected = service.slash_validator("platform", "val-1", 1, "Spam", now=NOW)
        assert rejected.error_code == "BelowMinimumStake"
        assert service.slash_validator("platform", "val-1", 1_000, "Spam", now=NOW).success
        assert service.check_invariants().success

    def test_trust_score_query(self) -> None:
        oracle = StaticIdentityOracle(kyc_levels={"agent-a": 1})
        svc = MarketService(_resolver(), oracle=oracle)
        svc.register_agent("agent-a", "Agent A", now=NOW)
        result = svc.get_trust_score("agent-a", now=NOW)
        assert result.data["total"] == 10
        assert result.data["rating"] == "untrusted"
        assert result.data["breakdown"]["kyc"] == 10
        assert svc.oracle is oracle


class TestStatus:
    def test_status_counts(self, service: MarketService) -> None:
        _hire(service)
        status = service.status()
        assert status["version"] == __version__
        assert status["agents"] == {"total": 2, "active": 2}
        assert status["jobs"] == {"total": 1, "by_state": {"funded": 1}}
        assert status["escrow"][ESCROW_JOBS] == 1000
        assert status["commits"] == 4
        assert status["events"] >= status["commits"]
        assert not status["persistence_degraded"]

    def test_invariant_violation_reported(self, service: MarketService) -> None:
        txn = Transaction(actor_id="mallory", timestamp=NOW)
        txn.transfer("mallory", ESCROW_JOBS, 5)
        service.ledger.commit(txn)
        result = service.check_invariants()
        assert not result.success
        assert result.error_code == "InvariantViolation"
        assert any(ESCROW_JOBS in e for e in result.errors)


class TestPersistence:
    def test_open_restores_state(self, tmp_path: Path) -> None:
        svc = MarketService.open(CONFIG_DIR, tmp_path)
        svc.register_agent("agent-a", "Agent A", now=NOW)
        job = svc.create_job("alice", "Audit", "Desc", ["r"], 20_000, agent="agent-a", now=NOW)
        svc.fund_job(job.data["job_id"], 20_000, "alice", now=NOW)
        assert (tmp_path / EVENTS_FILENAME).exists()
        assert (tmp_path / STATE_FILENAME).exists()

        reopened = MarketService.open(CONFIG_DIR, tmp_path)
        assert reopened.get_job(job.data["job_id"]).data["state"] == "funded"
        assert reopened.ledger.balance(ESCROW_JOBS) == 20_000
        assert reopened.ledger.event_log.count == svc.ledger.event_log.count
        assert reopened.check_invariants().success
