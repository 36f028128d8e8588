"""Job and bid models — the unit of escrowed work and proposals on it.

Job lifecycle:
    CREATED → FUNDED → ACCEPTED → INPROGRESS → DELIVERED → COMPLETED
    CREATED/FUNDED → REFUNDED                    (client cancels)
    ACCEPTED/INPROGRESS/DELIVERED → DISPUTED → ARBITRATED
    FUNDED/ACCEPTED/INPROGRESS → REFUNDED        (deadline or acceptance timeout)

Terminal states: COMPLETED, REFUNDED, ARBITRATED.

An open job has no agent and is in CREATED; only open jobs take bids.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class JobState(str, enum.Enum):
    """Lifecycle state of a job."""
    CREATED = "created"
    FUNDED = "funded"
    ACCEPTED = "accepted"
    INPROGRESS = "inprogress"
    DELIVERED = "delivered"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    ARBITRATED = "arbitrated"


TERMINAL_JOB_STATES = frozenset({
    JobState.COMPLETED,
    JobState.REFUNDED,
    JobState.ARBITRATED,
})

# States in which evidence may be present (after a delivery).
EVIDENCE_STATES = frozenset({
    JobState.DELIVERED,
    JobState.DISPUTED,
    JobState.COMPLETED,
    JobState.ARBITRATED,
})


@dataclass
class Job:
    """A unit of work under escrow.

    Invariants (enforced by the job engine, checked by the audit):
    - 0 <= funded_amount <= amount
    - 0 <= released_amount <= funded_amount
    - agent is None only while CREATED, or REFUNDED after an open job is
      cancelled
    """
    job_id: int
    client: str
    title: str
    description: str
    amount: int
    agent: Optional[str] = None
    deliverables: list[str] = field(default_factory=list)
    funded_amount: int = 0
    released_amount: int = 0
    deadline: int = 0
    arbitrator: Optional[str] = None
    evidence_uri: Optional[str] = None
    state: JobState = JobState.CREATED
    created_at: int = 0
    updated_at: int = 0
    funded_at: int = 0
    delivered_at: int = 0

    @property
    def is_open(self) -> bool:
        """Open for bidding: unassigned and still CREATED."""
        return self.agent is None and self.state == JobState.CREATED

    @property
    def remaining_to_fund(self) -> int:
        return self.amount - self.funded_amount

    @property
    def held_in_escrow(self) -> int:
        return self.funded_amount - self.released_amount

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES


@dataclass
class Bid:
    """An agent's proposal on an open job.

    At most one active bid per (job_id, agent). Selecting a bid marks it
    ``selected`` and deactivates every other bid on the job.
    """
    bid_id: int
    job_id: int
    agent: str
    amount: int
    timeline: int
    proposal: str
    active: bool = True
    selected: bool = False
    created_at: int = 0
