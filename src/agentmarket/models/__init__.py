"""Core data models for the agent marketplace."""

from agentmarket.models.job import Bid, Job, JobState, TERMINAL_JOB_STATES
from agentmarket.models.dispute import (
    Arbitrator,
    Authority,
    AuthorityKind,
    Dispute,
    DisputeResolution,
    UnstakeRequest,
    UnstakeStatus,
)
from agentmarket.models.validation import (
    Challenge,
    ChallengeStatus,
    Validation,
    ValidationResult,
    Validator,
)
from agentmarket.models.agent import (
    AgentRecord,
    FeedbackRecord,
    TrustBreakdown,
    TrustRating,
    TrustScore,
)
from agentmarket.models.page import Page

__all__ = [
    "AgentRecord",
    "Arbitrator",
    "Authority",
    "AuthorityKind",
    "Bid",
    "Challenge",
    "ChallengeStatus",
    "Dispute",
    "DisputeResolution",
    "FeedbackRecord",
    "Job",
    "JobState",
    "Page",
    "TERMINAL_JOB_STATES",
    "TrustBreakdown",
    "TrustRating",
    "TrustScore",
    "UnstakeRequest",
    "UnstakeStatus",
    "Validation",
    "ValidationResult",
    "Validator",
]
