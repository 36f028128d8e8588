"""Agent, feedback, and derived trust-score models.

Trust in the marketplace is a derived 0-100 number:
    kyc (0-30) + stake (0-20) + reputation (0-40) + longevity (0-10)

It is never stored; TrustScore is recomputed on every read.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class AgentRecord:
    """A registered agent (autonomous or human) that can be hired."""
    account: str
    name: str
    description: str = ""
    endpoint: str = ""
    capabilities: list[str] = field(default_factory=list)
    active: bool = True
    total_jobs: int = 0
    registered_at: int = 0


@dataclass
class FeedbackRecord:
    """A reviewer's 1-5 rating of an agent.

    ``reviewer_kyc_level`` is captured at submission and weights the
    rating in the reputation component. A disputed rating stops counting
    until the dispute is resolved, and never counts again if upheld.
    """
    feedback_id: int
    reviewer: str
    agent: str
    score: int
    reviewer_kyc_level: int = 0
    job_id: Optional[int] = None
    comment: str = ""
    created_at: int = 0
    disputed: bool = False
    resolved: bool = False
    upheld: bool = False

    @property
    def counts_toward_reputation(self) -> bool:
        if not self.disputed:
            return True
        return self.resolved and not self.upheld


class FeedbackDisputeStatus(str, enum.Enum):
    PENDING = "pending"
    UPHELD = "upheld"
    REJECTED = "rejected"


@dataclass
class FeedbackDispute:
    """The agent or the reviewer contesting one rating."""
    dispute_id: int
    feedback_id: int
    disputer: str
    reason: str
    evidence_uri: str = ""
    status: FeedbackDisputeStatus = FeedbackDisputeStatus.PENDING
    resolver: Optional[str] = None
    resolution_notes: str = ""
    created_at: int = 0
    resolved_at: int = 0


class TrustRating(str, enum.Enum):
    """Display band for a trust score."""
    UNTRUSTED = "untrusted"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERIFIED = "verified"

    @staticmethod
    def for_score(score: int) -> TrustRating:
        if score >= 80:
            return TrustRating.VERIFIED
        if score >= 60:
            return TrustRating.HIGH
        if score >= 40:
            return TrustRating.MEDIUM
        if score >= 20:
            return TrustRating.LOW
        return TrustRating.UNTRUSTED


@dataclass(frozen=True)
class TrustBreakdown:
    kyc: int = 0
    stake: int = 0
    reputation: int = 0
    longevity: int = 0

    @property
    def total(self) -> int:
        return self.kyc + self.stake + self.reputation + self.longevity


@dataclass(frozen=True)
class TrustScore:
    """Derived trust score for one account. Always in [0, 100]."""
    account: str
    total: int
    breakdown: TrustBreakdown
    rating: TrustRating
