"""Validator, validation, and challenge models.

Validation is an independent quality layer: staked validators record
verdicts on agents' work, and anyone may put up a stake to challenge a
verdict. An upheld challenge slashes the validator.

Challenge lifecycle:
    PENDING → UPHELD | REJECTED       (resolved by platform owner, funded only)
    PENDING → CANCELLED               (unfunded: cancelled or expired)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from agentmarket.models.money import BPS_DENOMINATOR


class ValidationResult(str, enum.Enum):
    """A validator's verdict."""
    FAIL = "fail"
    PASS = "pass"
    PARTIAL = "partial"


class ChallengeStatus(str, enum.Enum):
    """Lifecycle state of a challenge."""
    PENDING = "pending"
    UPHELD = "upheld"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


def compute_accuracy(total_validations: int, incorrect_validations: int) -> int:
    """Accuracy in basis points: (total - incorrect) / total.

    A validator with no validations is at full accuracy.
    """
    if total_validations <= 0:
        return BPS_DENOMINATOR
    correct = max(total_validations - incorrect_validations, 0)
    return correct * BPS_DENOMINATOR // total_validations


@dataclass
class Validator:
    """A registered output-quality reviewer with slashable stake.

    Registered inactive. ``active`` may only be True while stake is at
    least the configured minimum.
    """
    account: str
    method: str
    specializations: list[str] = field(default_factory=list)
    stake: int = 0
    active: bool = True
    accuracy_bps: int = BPS_DENOMINATOR
    total_validations: int = 0
    incorrect_validations: int = 0
    pending_challenges: int = 0
    registered_at: int = 0


@dataclass
class Validation:
    """One validator's verdict on one piece of an agent's work.

    Immutable except for ``challenged``, which flips to True once.
    """
    validation_id: int
    validator: str
    agent: str
    job_hash: str
    result: ValidationResult
    confidence: int
    evidence_uri: str = ""
    challenged: bool = False
    timestamp: int = 0


@dataclass
class Challenge:
    """A funded dispute of a validation."""
    challenge_id: int
    validation_id: int
    challenger: str
    reason: str
    evidence_uri: str = ""
    status: ChallengeStatus = ChallengeStatus.PENDING
    stake_amount: int = 0
    created_at: int = 0
    funding_deadline: int = 0
    resolver: Optional[str] = None
    resolution_notes: str = ""
    slashed_amount: int = 0
    resolved_at: int = 0

    @property
    def is_funded(self) -> bool:
        return self.stake_amount > 0

    @property
    def is_pending(self) -> bool:
        return self.status == ChallengeStatus.PENDING
