"""Dispute and arbitrator models.

A dispute escalates a job's delivery. It is resolved exactly once,
either by the job's arbitrator or, after the timeout window, by the
platform owner. Resolution is monotonic: PENDING → resolved, never back.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from agentmarket.models.money import BPS_DENOMINATOR


class DisputeResolution(str, enum.Enum):
    """Outcome kind of a dispute."""
    PENDING = "pending"
    CLIENT_WINS = "client_wins"
    AGENT_WINS = "agent_wins"
    SPLIT = "split"

    @staticmethod
    def for_client_bps(client_bps: int) -> DisputeResolution:
        if client_bps == BPS_DENOMINATOR:
            return DisputeResolution.CLIENT_WINS
        if client_bps == 0:
            return DisputeResolution.AGENT_WINS
        return DisputeResolution.SPLIT


class AuthorityKind(str, enum.Enum):
    """Who is resolving a dispute, and under which preconditions."""
    ARBITRATOR = "arbitrator"
    PLATFORM_OWNER_TIMEOUT = "platform_owner_timeout"


@dataclass(frozen=True)
class Authority:
    """The party resolving a dispute.

    ARBITRATOR: must be the job's effective arbitrator; its fee applies.
    PLATFORM_OWNER_TIMEOUT: must be the platform owner, only after the
    dispute timeout has elapsed; no arbitrator fee.
    """
    kind: AuthorityKind
    account: str

    @classmethod
    def arbitrator(cls, account: str) -> Authority:
        return cls(AuthorityKind.ARBITRATOR, account)

    @classmethod
    def owner_timeout(cls, account: str) -> Authority:
        return cls(AuthorityKind.PLATFORM_OWNER_TIMEOUT, account)


@dataclass
class Dispute:
    """An escalation of a job's delivery.

    Invariant once resolved:
        client_amount + agent_amount + arbitrator_fee == funded_at_resolution
    """
    dispute_id: int
    job_id: int
    raised_by: str
    reason: str
    evidence_uri: Optional[str] = None
    created_at: int = 0
    resolution: DisputeResolution = DisputeResolution.PENDING
    resolver: Optional[str] = None
    authority: Optional[AuthorityKind] = None
    arbitrator: Optional[str] = None
    client_amount: int = 0
    agent_amount: int = 0
    arbitrator_fee: int = 0
    funded_at_resolution: int = 0
    resolution_notes: str = ""
    resolved_at: int = 0

    @property
    def is_pending(self) -> bool:
        return self.resolution == DisputeResolution.PENDING


@dataclass
class Arbitrator:
    """A registered dispute resolver.

    ``stake`` is not slashable. ``successful_cases`` is a best-effort
    display metric and is never used for eligibility.
    """
    account: str
    fee_bps: int
    stake: int = 0
    active: bool = False
    total_cases: int = 0
    successful_cases: int = 0
    registered_at: int = 0

    @property
    def success_rate_bps(self) -> int:
        if self.total_cases == 0:
            return 0
        return self.successful_cases * BPS_DENOMINATOR // self.total_cases


class UnstakeStatus(str, enum.Enum):
    """Lifecycle of a delayed unstake request."""
    PENDING = "pending"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"


@dataclass
class UnstakeRequest:
    """A delayed withdrawal of stake, cancellable until withdrawn.

    Shared by arbitrators and validators.
    """
    request_id: int
    account: str
    amount: int
    requested_at: int
    available_at: int
    status: UnstakeStatus = UnstakeStatus.PENDING
    closed_at: int = 0

    @property
    def is_pending(self) -> bool:
        return self.status == UnstakeStatus.PENDING
