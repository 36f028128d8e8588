"""Tests for disputes and arbitration — proves exact splits and resolver rules."""

from types import SimpleNamespace
from typing import Any, Optional

import pytest

from agentmarket.disputes.arbitration import ArbitrationEngine
from agentmarket.errors import (
    AlreadyResolved,
    BelowMinimumStake,
    DuplicateActive,
    InsufficientFunds,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    NotYetEligible,
    Unauthorized,
)
from agentmarket.escrow.jobs import JobEngine
from agentmarket.identity.oracle import StaticIdentityOracle
from agentmarket.models.dispute import (
    Authority,
    AuthorityKind,
    DisputeResolution,
    UnstakeStatus,
)
from agentmarket.models.job import JobState
from agentmarket.persistence.codec import ESCROW_ARBITRATORS, ESCROW_JOBS
from agentmarket.persistence.ledger import InMemoryLedger
from agentmarket.policy.resolver import PolicyResolver
from agentmarket.registry.agents import AgentRegistry
from agentmarket.trust.engine import TrustScoreAggregator

NOW = 1_700_000_000
DAY = 86_400
MIN_STAKE = 1_000


def _params(**sections: dict[str, Any]) -> dict[str, Any]:
    params: dict[str, Any] = {
        "escrow": {"min_job_amount": 1},
        "arbitration": {"min_stake": MIN_STAKE},
    }
    for section, values in sections.items():
        params.setdefault(section, {}).update(values)
    return params


def _make_market(**sections: dict[str, Any]) -> SimpleNamespace:
    resolver = PolicyResolver.from_params(_params(**sections))
    ledger = InMemoryLedger()
    oracle = StaticIdentityOracle()
    registry = AgentRegistry(ledger, resolver, oracle)
    trust = TrustScoreAggregator(ledger, resolver.trust(), oracle)
    jobs = JobEngine(ledger, resolver, registry, trust)
    disputes = ArbitrationEngine(ledger, resolver, jobs)
    registry.register_agent("agent-a", "Agent A", now=NOW)
    return SimpleNamespace(
        resolver=resolver, ledger=ledger, registry=registry, jobs=jobs, disputes=disputes,
    )


def _active_arbitrator(m: SimpleNamespace, account: str = "judge", fee_bps: int = 0) -> None:
    m.disputes.register_arbitrator(account, fee_bps, now=NOW)
    m.disputes.stake_arbitrator(account, MIN_STAKE, now=NOW)
    m.disputes.set_arbitrator_active(account, True, now=NOW)


def _delivered_job(m: SimpleNamespace, amount: int = 500, arbitrator: Optional[str] = "judge"):
    job = m.jobs.create_job(
        "alice", "Audit", "Audit the contract", ["report.md"], amount,
        agent="agent-a", arbitrator=arbitrator, now=NOW,
    )
    m.jobs.fund_job(job.job_id, amount, "alice", now=NOW)
    m.jobs.accept_job(job.job_id, "agent-a", now=NOW)
    return m.jobs.deliver_job(job.job_id, "agent-a", "ipfs://result", now=NOW)


def _disputed(m: SimpleNamespace, amount: int = 500, arbitrator: Optional[str] = "judge"):
    job = _delivered_job(m, amount, arbitrator)
    return m.disputes.raise_dispute(job.job_id, "alice", "Incomplete work", now=NOW + 1)


@pytest.fixture
def market() -> SimpleNamespace:
    m = _make_market()
    _active_arbitrator(m)
    return m


class TestRaiseDispute:
    def test_client_disputes_delivered_job(self, market) -> None:
        dispute = _disputed(market)
        assert dispute.is_pending
        assert dispute.arbitrator == "judge"
        assert market.jobs.get_job(dispute.job_id).state == JobState.DISPUTED
        assert market.disputes.get_dispute(dispute.job_id).dispute_id == dispute.dispute_id

    def test_agent_can_dispute_in_progress(self, market) -> None:
        job = market.jobs.create_job(
            "alice", "Audit", "Desc", ["r"], 500, agent="agent-a", now=NOW,
        )
        market.jobs.fund_job(job.job_id, 500, "alice", now=NOW)
        market.jobs.accept_job(job.job_id, "agent-a", now=NOW)
        market.jobs.start_job(job.job_id, "agent-a", now=NOW)
        dispute = market.disputes.raise_dispute(job.job_id, "agent-a", "Scope creep", now=NOW)
        assert dispute.raised_by == "agent-a"

    def test_outsider_cannot_dispute(self, market) -> None:
        job = _delivered_job(market)
        with pytest.raises(Unauthorized):
            market.disputes.raise_dispute(job.job_id, "mallory", "Because", now=NOW)

    def test_funded_job_cannot_be_disputed(self, market) -> None:
        job = market.jobs.create_job("alice", "Audit", "Desc", ["r"], 500, agent="agent-a", now=NOW)
        market.jobs.fund_job(job.job_id, 500, "alice", now=NOW)
        with pytest.raises(InvalidTransition):
            market.disputes.raise_dispute(job.job_id, "alice", "Early", now=NOW)

    def test_dispute_window_closes(self, market) -> None:
        job = _delivered_job(market)
        with pytest.raises(InvalidTransition, match="dispute window"):
            market.disputes.raise_dispute(job.job_id, "alice", "Late", now=NOW + 3 * DAY + 1)

    def test_reason_required(self, market) -> None:
        job = _delivered_job(market)
        with pytest.raises(InvalidArgument):
            market.disputes.raise_dispute(job.job_id, "alice", "", now=NOW)

    def test_default_arbitrator_applies(self) -> None:
        m = _make_market(platform={"default_arbitrator": "judge"})
        _active_arbitrator(m)
        dispute = _disputed(m, arbitrator=None)
        assert dispute.arbitrator == "judge"


class TestArbitrate:
    def test_seventy_thirty_split(self, market) -> None:
        dispute = _disputed(market, amount=500)
        resolved = market.disputes.arbitrate(dispute.dispute_id, "judge", 70, "Partial", now=NOW + 2)

        assert resolved.client_amount == 350
        assert resolved.agent_amount == 150
        assert resolved.arbitrator_fee == 0
        assert resolved.resolution == DisputeResolution.SPLIT
        assert resolved.authority == AuthorityKind.ARBITRATOR
        job = market.jobs.get_job(dispute.job_id)
        assert job.state == JobState.ARBITRATED
        assert job.released_amount == job.funded_amount
        assert market.ledger.balance(ESCROW_JOBS) == 0
        assert market.ledger.balance("agent-a") == 150

    def test_second_arbitration_already_resolved(self, market) -> None:
        dispute = _disputed(market)
        market.disputes.arbitrate(dispute.dispute_id, "judge", 70, "Partial", now=NOW + 2)
        with pytest.raises(AlreadyResolved):
            market.disputes.arbitrate(dispute.dispute_id, "judge", 50, "Again", now=NOW + 3)

    def test_fee_then_split_is_exact(self) -> None:
        m = _make_market()
        _active_arbitrator(m, fee_bps=200)
        dispute = _disputed(m, amount=1000)
        resolved = m.disputes.arbitrate(dispute.dispute_id, "judge", 70, "Split", now=NOW + 2)
        assert resolved.arbitrator_fee == 20
        assert resolved.client_amount == 686
        assert resolved.agent_amount == 294
        assert m.ledger.balance("judge") == 20 - MIN_STAKE

    @pytest.mark.parametrize("amount,percent", [(333, 33), (1001, 50), (7, 99), (10_007, 1)])
    def test_no_rounding_leakage(self, market, amount: int, percent: int) -> None:
        dispute = _disputed(market, amount=amount)
        resolved = market.disputes.arbitrate(dispute.dispute_id, "judge", percent, "n", now=NOW + 2)
        assert resolved.client_amount + resolved.agent_amount == amount
        assert resolved.funded_at_resolution == amount

    def test_full_client_win_does_not_count_agent_job(self, market) -> None:
        dispute = _disputed(market)
        resolved = market.disputes.arbitrate(dispute.dispute_id, "judge", 100, "Refund", now=NOW + 2)
        assert resolved.resolution == DisputeResolution.CLIENT_WINS
        assert market.registry.get_agent("agent-a").total_jobs == 0

    def test_agent_win_counts_agent_job(self, market) -> None:
        dispute = _disputed(market)
        resolved = market.disputes.arbitrate(dispute.dispute_id, "judge", 0, "Paid", now=NOW + 2)
        assert resolved.resolution == DisputeResolution.AGENT_WINS
        assert market.registry.get_agent("agent-a").total_jobs == 1

    def test_other_arbitrator_unauthorized(self, market) -> None:
        _active_arbitrator(market, "other-judge")
        dispute = _disputed(market)
        with pytest.raises(Unauthorized):
            market.disputes.arbitrate(dispute.dispute_id, "other-judge", 50, "n", now=NOW + 2)

    def test_inactive_arbitrator_unauthorized(self, market) -> None:
        dispute = _disputed(market)
        market.disputes.set_arbitrator_active("judge", False, now=NOW)
        with pytest.raises(Unauthorized):
            market.disputes.arbitrate(dispute.dispute_id, "judge", 50, "n", now=NOW + 2)

    def test_understaked_arbitrator_rejected(self, market) -> None:
        dispute = _disputed(market)
        strict = PolicyResolver.from_params(_params(arbitration={"min_stake": MIN_STAKE + 1}))
        engine = ArbitrationEngine(market.ledger, strict, market.jobs)
        with pytest.raises(BelowMinimumStake):
            engine.arbitrate(dispute.dispute_id, "judge", 50, "n", now=NOW + 2)

    def test_percent_out_of_range(self, market) -> None:
        dispute = _disputed(market)
        with pytest.raises(InvalidArgument):
            market.disputes.arbitrate(dispute.dispute_id, "judge", 101, "n", now=NOW + 2)

    def test_notes_required(self, market) -> None:
        dispute = _disputed(market)
        with pytest.raises(InvalidArgument):
            market.disputes.arbitrate(dispute.dispute_id, "judge", 50, "", now=NOW + 2)

    def test_case_counters(self, market) -> None:
        dispute = _disputed(market)
        market.disputes.arbitrate(dispute.dispute_id, "judge", 50, "n", now=NOW + 2)
        judge = market.disputes.get_arbitrator("judge")
        assert judge.total_cases == 1
        assert judge.successful_cases == 1
        assert judge.success_rate_bps == 10_000

    def test_unknown_dispute(self, market) -> None:
        with pytest.raises(NotFound):
            market.disputes.arbitrate(42, "judge", 50, "n", now=NOW)


class TestResolveTimeout:
    def test_owner_must_wait(self, market) -> None:
        dispute = _disputed(market)
        with pytest.raises(NotYetEligible):
            market.disputes.resolve_timeout(
                dispute.dispute_id, "platform", 50, "Timeout", now=dispute.created_at + 14 * DAY - 1,
            )

    def test_owner_resolves_after_window_without_fee(self) -> None:
        m = _make_market()
        _active_arbitrator(m, fee_bps=500)
        dispute = _disputed(m, amount=1000)
        resolved = m.disputes.resolve_timeout(
            dispute.dispute_id, "platform", 40, "Timeout", now=dispute.created_at + 14 * DAY,
        )
        assert resolved.arbitrator_fee == 0
        assert resolved.client_amount == 400
        assert resolved.agent_amount == 600
        assert resolved.authority == AuthorityKind.PLATFORM_OWNER_TIMEOUT
        judge = m.disputes.get_arbitrator("judge")
        assert judge.total_cases == 1
        assert judge.successful_cases == 0

    def test_only_owner_can_claim_timeout(self, market) -> None:
        dispute = _disputed(market)
        with pytest.raises(Unauthorized):
            market.disputes.resolve_timeout(
                dispute.dispute_id, "alice", 100, "Mine", now=NOW + 30 * DAY,
            )

    def test_dispute_without_arbitrator_resolves_by_timeout(self, market) -> None:
        dispute = _disputed(market, arbitrator=None)
        assert dispute.arbitrator is None
        with pytest.raises(Unauthorized):
            market.disputes.arbitrate(dispute.dispute_id, "judge", 50, "n", now=NOW + 2)
        resolved = market.disputes.resolve(
            dispute.dispute_id, 50, "Timeout",
            Authority.owner_timeout("platform"), now=NOW + 15 * DAY,
        )
        assert resolved.client_amount + resolved.agent_amount == 500


class TestArbitratorRegistry:
    def test_fee_cap(self, market) -> None:
        with pytest.raises(InvalidArgument):
            market.disputes.register_arbitrator("greedy", 501, now=NOW)

    def test_reregistration_updates_fee(self, market) -> None:
        market.disputes.register_arbitrator("judge", 300, now=NOW)
        judge = market.disputes.get_arbitrator("judge")
        assert judge.fee_bps == 300
        assert judge.stake == MIN_STAKE

    def test_activation_requires_stake(self, market) -> None:
        market.disputes.register_arbitrator("rookie", 100, now=NOW)
        with pytest.raises(BelowMinimumStake):
            market.disputes.set_arbitrator_active("rookie", True, now=NOW)

    def test_stake_moves_into_escrow(self, market) -> None:
        assert market.ledger.balance(ESCROW_ARBITRATORS) == MIN_STAKE
        assert market.ledger.balance("judge") == -MIN_STAKE

    def test_unstake_requires_inactive(self, market) -> None:
        with pytest.raises(InvalidTransition):
            market.disputes.unstake_arbitrator("judge", now=NOW)

    def test_unstake_blocked_by_pending_dispute(self, market) -> None:
        _disputed(market)
        market.disputes.set_arbitrator_active("judge", False, now=NOW)
        with pytest.raises(InvalidTransition, match="pending disputes"):
            market.disputes.unstake_arbitrator("judge", now=NOW)

    def test_unstake_withdraw_after_delay(self, market) -> None:
        market.disputes.set_arbitrator_active("judge", False, now=NOW)
        request = market.disputes.unstake_arbitrator("judge", now=NOW)
        assert request.amount == MIN_STAKE
        assert market.disputes.get_arbitrator("judge").stake == 0
        with pytest.raises(DuplicateActive):
            market.disputes.unstake_arbitrator("judge", 1, now=NOW)
        with pytest.raises(NotYetEligible):
            market.disputes.withdraw_arbitrator_unstake("judge", now=NOW + 7 * DAY - 1)
        done = market.disputes.withdraw_arbitrator_unstake("judge", now=NOW + 7 * DAY)
        assert done.status == UnstakeStatus.WITHDRAWN
        assert market.ledger.balance("judge") == 0
        assert market.ledger.balance(ESCROW_ARBITRATORS) == 0

    def test_cancel_unstake_restores_stake(self, market) -> None:
        market.disputes.set_arbitrator_active("judge", False, now=NOW)
        market.disputes.unstake_arbitrator("judge", 400, now=NOW)
        judge = market.disputes.cancel_arbitrator_unstake("judge", now=NOW + 1)
        assert judge.stake == MIN_STAKE
        assert market.disputes.list_unstake_requests("judge")[0].status == UnstakeStatus.CANCELLED

    def test_unstake_more_than_stake(self, market) -> None:
        market.disputes.set_arbitrator_active("judge", False, now=NOW)
        with pytest.raises(InsufficientFunds):
            market.disputes.unstake_arbitrator("judge", MIN_STAKE + 1, now=NOW)

    def test_withdraw_without_request(self, market) -> None:
        with pytest.raises(NotFound):
            market.disputes.withdraw_arbitrator_unstake("judge", now=NOW)

    def test_list_active_arbitrators(self, market) -> None:
        market.disputes.register_arbitrator("rookie", 100, now=NOW)
        assert [a.account for a in market.disputes.list_arbitrators(active_only=True)] == ["judge"]
        assert len(market.disputes.list_arbitrators()) == 2
