"""Trust score aggregator — derives a 0-100 trust score on every read.

Trust model:
  score = kyc + stake + reputation + longevity

  kyc        = min(level × points_per_level, kyc_max)            0-30
  stake      = min(stake × stake_max // stake_cap, stake_max)     0-20
  reputation = Σ(score × w) × reputation_max // Σ(max_score × w)  0-40
               with w = 1 + reviewer KYC level at submission,
               over ratings not under a pending or upheld dispute
  longevity  = min(full months since registration, longevity_max) 0-10

Invariants enforced:
- The score is always in [0, 100].
- Non-decreasing in stake and in elapsed time, all else held fixed.
- Nothing is cached: the score is recomputed from current ledger state,
  oracle answers and feedback history on each call.
"""

from __future__ import annotations

from typing import Iterable, Optional

from agentmarket.checks import current_time
from agentmarket.errors import NotFound
from agentmarket.identity.oracle import IdentityOracle
from agentmarket.models.agent import (
    AgentRecord,
    FeedbackRecord,
    TrustBreakdown,
    TrustRating,
    TrustScore,
)
from agentmarket.persistence.codec import AGENTS, FEEDBACK, from_record
from agentmarket.persistence.ledger import Ledger
from agentmarket.policy.resolver import TrustPolicy


def kyc_component(level: int, policy: TrustPolicy) -> int:
    level = max(0, min(level, policy.max_kyc_level))
    return min(level * policy.kyc_points_per_level, policy.kyc_max)


def stake_component(stake: int, policy: TrustPolicy) -> int:
    if stake <= 0:
        return 0
    return min(stake * policy.stake_max // policy.stake_cap, policy.stake_max)


def reputation_component(
    feedback: Iterable[FeedbackRecord],
    policy: TrustPolicy,
) -> int:
    """KYC-weighted mean feedback score, scaled to reputation_max.

    Ratings under a pending or upheld dispute are left out.
    """
    weighted = 0
    max_weighted = 0
    for fb in feedback:
        if not fb.counts_toward_reputation:
            continue
        weight = 1 + max(0, min(fb.reviewer_kyc_level, policy.max_kyc_level))
        weighted += fb.score * weight
        max_weighted += policy.max_feedback_score * weight
    if max_weighted == 0:
        return 0
    return min(weighted * policy.reputation_max // max_weighted, policy.reputation_max)


def longevity_component(registered_at: int, now: int, policy: TrustPolicy) -> int:
    months = max(0, now - registered_at) // policy.month_seconds
    return min(months, policy.longevity_max)


def compute_trust_score(
    account: str,
    kyc_level: int,
    stake: int,
    feedback: Iterable[FeedbackRecord],
    registered_at: int,
    now: int,
    policy: TrustPolicy,
) -> TrustScore:
    """Pure computation of a trust score from its inputs."""
    breakdown = TrustBreakdown(
        kyc=kyc_component(kyc_level, policy),
        stake=stake_component(stake, policy),
        reputation=reputation_component(feedback, policy),
        longevity=longevity_component(registered_at, now, policy),
    )
    total = max(0, min(100, breakdown.total))
    return TrustScore(
        account=account,
        total=total,
        breakdown=breakdown,
        rating=TrustRating.for_score(total),
    )


class TrustScoreAggregator:
    """Reads current agent, stake and feedback state and scores it."""

    def __init__(
        self,
        ledger: Ledger,
        policy: TrustPolicy,
        oracle: IdentityOracle,
    ) -> None:
        self._ledger = ledger
        self._policy = policy
        self._oracle = oracle

    def get_trust_score(self, account: str, now: Optional[int] = None) -> TrustScore:
        """Score a registered agent. Raises NotFound for unknown accounts."""
        now = current_time(now)
        entry = self._ledger.read(AGENTS, account)
        if entry is None:
            raise NotFound(f"Agent not found: {account}")
        agent = from_record(AgentRecord, entry.value)
        feedback = [
            from_record(FeedbackRecord, e.value)
            for e in self._ledger.scan(FEEDBACK)
            if e.value["agent"] == account
        ]
        return compute_trust_score(
            account=account,
            kyc_level=self._oracle.kyc_level(account),
            stake=self._oracle.system_stake(account),
            feedback=feedback,
            registered_at=agent.registered_at,
            now=now,
            policy=self._policy,
        )
