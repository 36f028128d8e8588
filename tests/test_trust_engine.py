"""Tests for trust scoring — proves component caps, bounds and monotonicity."""

import pytest

from agentmarket.errors import (
    AlreadyResolved,
    DuplicateActive,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from agentmarket.identity.oracle import StaticIdentityOracle
from agentmarket.models.agent import FeedbackRecord, TrustRating
from agentmarket.persistence.ledger import InMemoryLedger
from agentmarket.policy.resolver import PolicyResolver
from agentmarket.registry.agents import AgentRegistry
from agentmarket.trust.engine import (
    TrustScoreAggregator,
    compute_trust_score,
    kyc_component,
    longevity_component,
    reputation_component,
    stake_component,
)

NOW = 1_700_000_000
MONTH = 30 * 86_400


@pytest.fixture
def policy():
    return PolicyResolver.from_params().trust()


def _feedback(score: int, reviewer_kyc_level: int = 0, feedback_id: int = 1) -> FeedbackRecord:
    return FeedbackRecord(
        feedback_id=feedback_id,
        reviewer="bob",
        agent="agent-a",
        score=score,
        reviewer_kyc_level=reviewer_kyc_level,
    )


class TestComponents:
    def test_kyc_points_per_level(self, policy) -> None:
        assert kyc_component(0, policy) == 0
        assert kyc_component(2, policy) == 20
        assert kyc_component(3, policy) == 30

    def test_kyc_clamped(self, policy) -> None:
        assert kyc_component(7, policy) == 30
        assert kyc_component(-1, policy) == 0

    def test_stake_is_linear_then_capped(self, policy) -> None:
        assert stake_component(0, policy) == 0
        assert stake_component(50_000_000, policy) == 10
        assert stake_component(100_000_000, policy) == 20
        assert stake_component(10**15, policy) == 20

    def test_no_feedback_no_reputation(self, policy) -> None:
        assert reputation_component([], policy) == 0

    def test_perfect_feedback_full_reputation(self, policy) -> None:
        assert reputation_component([_feedback(5)], policy) == 40

    def test_reviewer_kyc_weights_feedback(self, policy) -> None:
        # 5 at weight 1 plus 1 at weight 4: 9 of a possible 25
        fb = [_feedback(5, 0, 1), _feedback(1, 3, 2)]
        assert reputation_component(fb, policy) == 9 * 40 // 25

    def test_disputed_feedback_left_out(self, policy) -> None:
        good = _feedback(5, feedback_id=1)
        pending = FeedbackRecord(feedback_id=2, reviewer="eve", agent="agent-a", score=1, disputed=True)
        upheld = FeedbackRecord(
            feedback_id=3, reviewer="eve", agent="agent-a", score=1,
            disputed=True, resolved=True, upheld=True,
        )
        rejected = FeedbackRecord(
            feedback_id=4, reviewer="eve", agent="agent-a", score=1,
            disputed=True, resolved=True,
        )
        assert reputation_component([good, pending, upheld], policy) == 40
        assert reputation_component([good, rejected], policy) == 6 * 40 // 10

    def test_longevity_counts_full_months(self, policy) -> None:
        assert longevity_component(NOW, NOW + MONTH - 1, policy) == 0
        assert longevity_component(NOW, NOW + MONTH, policy) == 1
        assert longevity_component(NOW, NOW + 400 * MONTH, policy) == 10

    def test_longevity_ignores_clock_skew(self, policy) -> None:
        assert longevity_component(NOW, NOW - MONTH, policy) == 0


class TestComputeTrustScore:
    def test_maximum_is_one_hundred(self, policy) -> None:
        score = compute_trust_score(
            "agent-a", 3, 10**12, [_feedback(5)], NOW, NOW + 20 * 12 * MONTH, policy,
        )
        assert score.total == 100
        assert score.rating == TrustRating.VERIFIED

    def test_fresh_agent_scores_zero(self, policy) -> None:
        score = compute_trust_score("agent-a", 0, 0, [], NOW, NOW, policy)
        assert score.total == 0
        assert score.rating == TrustRating.UNTRUSTED

    def test_total_is_sum_of_breakdown(self, policy) -> None:
        score = compute_trust_score("agent-a", 1, 50_000_000, [_feedback(4)], NOW, NOW + 2 * MONTH, policy)
        assert score.breakdown.kyc == 10
        assert score.breakdown.stake == 10
        assert score.breakdown.reputation == 32
        assert score.breakdown.longevity == 2
        assert score.total == 54
        assert score.rating == TrustRating.MEDIUM

    @pytest.mark.parametrize("stake", [0, 1, 10_000_000, 99_999_999, 100_000_000, 10**13])
    def test_bounded(self, policy, stake: int) -> None:
        score = compute_trust_score("agent-a", 3, stake, [_feedback(5)], NOW, NOW + 999 * MONTH, policy)
        assert 0 <= score.total <= 100

    def test_non_decreasing_in_stake(self, policy) -> None:
        totals = [
            compute_trust_score("agent-a", 1, stake, [], NOW, NOW, policy).total
            for stake in range(0, 200_000_000, 7_000_000)
        ]
        assert totals == sorted(totals)

    def test_non_decreasing_in_time(self, policy) -> None:
        totals = [
            compute_trust_score("agent-a", 1, 0, [], NOW, NOW + t, policy).total
            for t in range(0, 15 * MONTH, MONTH // 3)
        ]
        assert totals == sorted(totals)


class TestTrustScoreAggregator:
    @pytest.fixture
    def setup(self):
        resolver = PolicyResolver.from_params()
        ledger = InMemoryLedger()
        oracle = StaticIdentityOracle(kyc_levels={"agent-a": 2}, stakes={"agent-a": 100_000_000})
        registry = AgentRegistry(ledger, resolver, oracle)
        registry.register_agent("agent-a", "Agent A", now=NOW)
        aggregator = TrustScoreAggregator(ledger, resolver.trust(), oracle)
        return registry, oracle, aggregator

    def test_unregistered_account(self, setup) -> None:
        _, _, aggregator = setup
        with pytest.raises(NotFound):
            aggregator.get_trust_score("ghost", now=NOW)

    def test_reads_oracle_and_feedback(self, setup) -> None:
        registry, _, aggregator = setup
        registry.submit_feedback("bob", "agent-a", 5, now=NOW)
        score = aggregator.get_trust_score("agent-a", now=NOW + 3 * MONTH)
        assert score.breakdown.kyc == 20
        assert score.breakdown.stake == 20
        assert score.breakdown.reputation == 40
        assert score.breakdown.longevity == 3
        assert score.total == 83

    def test_recomputed_on_every_read(self, setup) -> None:
        _, oracle, aggregator = setup
        before = aggregator.get_trust_score("agent-a", now=NOW).total
        oracle.set_kyc_level("agent-a", 3)
        assert aggregator.get_trust_score("agent-a", now=NOW).total == before + 10


class TestFeedback:
    @pytest.fixture
    def registry(self):
        resolver = PolicyResolver.from_params()
        oracle = StaticIdentityOracle(kyc_levels={"bob": 2})
        registry = AgentRegistry(InMemoryLedger(), resolver, oracle)
        registry.register_agent("agent-a", "Agent A", now=NOW)
        return registry, oracle

    def test_reviewer_tier_captured_at_submission(self, registry) -> None:
        reg, oracle = registry
        reg.submit_feedback("bob", "agent-a", 4, now=NOW)
        oracle.set_kyc_level("bob", 0)
        assert reg.list_feedback("agent-a")[0].reviewer_kyc_level == 2

    @pytest.mark.parametrize("score", [0, 6, -1])
    def test_score_range(self, registry, score: int) -> None:
        reg, _ = registry
        with pytest.raises(InvalidArgument):
            reg.submit_feedback("bob", "agent-a", score, now=NOW)

    def test_no_self_review(self, registry) -> None:
        reg, _ = registry
        with pytest.raises(InvalidArgument):
            reg.submit_feedback("agent-a", "agent-a", 5, now=NOW)

    def test_unknown_agent(self, registry) -> None:
        reg, _ = registry
        with pytest.raises(NotFound):
            reg.submit_feedback("bob", "ghost", 5, now=NOW)

    def test_unknown_job(self, registry) -> None:
        reg, _ = registry
        with pytest.raises(NotFound):
            reg.submit_feedback("bob", "agent-a", 5, job_id=99, now=NOW)

    def test_blank_profile_fields_default_to_empty(self, registry) -> None:
        reg, _ = registry
        agent = reg.register_agent("agent-b", "Agent B", description=None, endpoint=None, now=NOW)
        assert agent.description == ""
        assert agent.endpoint == ""

    @pytest.mark.parametrize("kwargs", [
        {"description": 42},
        {"endpoint": ["https://x"]},
        {"capabilities": [None]},
        {"capabilities": None},
        {"description": "d" * 2049},
    ])
    def test_malformed_profile_rejected(self, registry, kwargs) -> None:
        reg, _ = registry
        with pytest.raises(InvalidArgument):
            reg.register_agent("agent-b", "Agent B", now=NOW, **kwargs)

    def test_malformed_comment_rejected(self, registry) -> None:
        reg, _ = registry
        with pytest.raises(InvalidArgument):
            reg.submit_feedback("bob", "agent-a", 5, comment=7, now=NOW)

    def test_oracle_rejects_negative_inputs(self) -> None:
        oracle = StaticIdentityOracle()
        with pytest.raises(ValueError):
            oracle.set_kyc_level("bob", -1)
        with pytest.raises(ValueError):
            oracle.set_system_stake("bob", -1)


class TestFeedbackDisputes:
    @pytest.fixture
    def setup(self):
        resolver = PolicyResolver.from_params()
        ledger = InMemoryLedger()
        oracle = StaticIdentityOracle()
        registry = AgentRegistry(ledger, resolver, oracle)
        registry.register_agent("agent-a", "Agent A", now=NOW)
        registry.submit_feedback("carol", "agent-a", 5, now=NOW)
        harsh = registry.submit_feedback("bob", "agent-a", 1, now=NOW)
        aggregator = TrustScoreAggregator(ledger, resolver.trust(), oracle)
        return registry, aggregator, harsh

    def _reputation(self, aggregator) -> int:
        return aggregator.get_trust_score("agent-a", now=NOW).breakdown.reputation

    def test_pending_dispute_suspends_rating(self, setup) -> None:
        registry, aggregator, harsh = setup
        assert self._reputation(aggregator) == 24
        registry.dispute_feedback("agent-a", harsh.feedback_id, "Never worked with bob", now=NOW + 1)
        assert self._reputation(aggregator) == 40
        assert len(registry.list_feedback_disputes(pending_only=True)) == 1

    def test_upheld_dispute_drops_rating(self, setup) -> None:
        registry, aggregator, harsh = setup
        dispute = registry.dispute_feedback("agent-a", harsh.feedback_id, "Fake", now=NOW + 1)
        resolved = registry.resolve_feedback_dispute("platform", dispute.dispute_id, True, "Fake review", now=NOW + 2)
        assert resolved.status.value == "upheld"
        assert self._reputation(aggregator) == 40
        assert registry.list_feedback_disputes(pending_only=True) == []

    def test_rejected_dispute_restores_rating(self, setup) -> None:
        registry, aggregator, harsh = setup
        dispute = registry.dispute_feedback("bob", harsh.feedback_id, "Typo in my rating", now=NOW + 1)
        registry.resolve_feedback_dispute("platform", dispute.dispute_id, False, "Rating stands", now=NOW + 2)
        assert self._reputation(aggregator) == 24
        with pytest.raises(AlreadyResolved):
            registry.resolve_feedback_dispute("platform", dispute.dispute_id, True, "Again", now=NOW + 3)

    def test_only_agent_or_reviewer_may_dispute(self, setup) -> None:
        registry, _, harsh = setup
        with pytest.raises(Unauthorized):
            registry.dispute_feedback("carol", harsh.feedback_id, "Not mine", now=NOW + 1)

    def test_disputed_at_most_once(self, setup) -> None:
        registry, _, harsh = setup
        registry.dispute_feedback("agent-a", harsh.feedback_id, "Fake", now=NOW + 1)
        with pytest.raises(DuplicateActive):
            registry.dispute_feedback("bob", harsh.feedback_id, "Also", now=NOW + 2)

    def test_dispute_window(self, setup) -> None:
        registry, _, harsh = setup
        with pytest.raises(InvalidTransition):
            registry.dispute_feedback("agent-a", harsh.feedback_id, "Late", now=NOW + 86_400 + 1)
        assert registry.dispute_feedback("agent-a", harsh.feedback_id, "Just in time", now=NOW + 86_400)

    def test_only_owner_resolves(self, setup) -> None:
        registry, _, harsh = setup
        dispute = registry.dispute_feedback("agent-a", harsh.feedback_id, "Fake", now=NOW + 1)
        with pytest.raises(Unauthorized):
            registry.resolve_feedback_dispute("agent-a", dispute.dispute_id, True, "Mine", now=NOW + 2)
        with pytest.raises(InvalidArgument):
            registry.resolve_feedback_dispute("platform", dispute.dispute_id, "yes", "n", now=NOW + 2)

    def test_unknown_feedback(self, setup) -> None:
        registry, _, _ = setup
        with pytest.raises(NotFound):
            registry.dispute_feedback("agent-a", 99, "Fake", now=NOW + 1)
