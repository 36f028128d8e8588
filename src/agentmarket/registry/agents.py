"""Agent registry and feedback — the inputs to trust scoring.

Agents must be registered and active to be hired directly or to bid.
Anyone other than the agent may leave a 1-5 rating; the reviewer's KYC
tier is captured from the identity oracle at submission time so that
later tier changes do not rewrite history.

Feedback disputes:
    the agent or the reviewer may dispute a rating within the feedback
    dispute window. While pending the rating is left out of reputation.
    The platform owner resolves it: UPHELD drops the rating for good,
    REJECTED restores it.
"""

from __future__ import annotations

from typing import Iterable, Optional

from agentmarket.checks import (
    current_time,
    optional_text,
    require_account,
    require_bool,
    require_int,
    require_text,
)
from agentmarket.errors import (
    AlreadyResolved,
    DuplicateActive,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from agentmarket.identity.oracle import IdentityOracle
from agentmarket.models.agent import (
    AgentRecord,
    FeedbackDispute,
    FeedbackDisputeStatus,
    FeedbackRecord,
)
from agentmarket.persistence.codec import (
    AGENTS,
    FEEDBACK,
    FEEDBACK_DISPUTES,
    JOBS,
    from_record,
)
from agentmarket.persistence.event_log import EventKind
from agentmarket.persistence.ledger import Ledger, Transaction
from agentmarket.policy.resolver import PolicyResolver


_MAX_NAME_LENGTH = 128
_MAX_TEXT_LENGTH = 2048
_MAX_CAPABILITIES = 32


class AgentRegistry:
    """Registers agents and records feedback against them."""

    def __init__(
        self,
        ledger: Ledger,
        resolver: PolicyResolver,
        oracle: IdentityOracle,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._oracle = oracle

    def register_agent(
        self,
        account: str,
        name: str,
        description: str = "",
        endpoint: str = "",
        capabilities: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> AgentRecord:
        now = current_time(now)
        account = require_account(account, "account")
        require_text(name, "name", _MAX_NAME_LENGTH)
        description = optional_text(description, "description", _MAX_TEXT_LENGTH) or ""
        endpoint = optional_text(endpoint, "endpoint", _MAX_TEXT_LENGTH) or ""
        caps = _check_capabilities(capabilities)
        if self._ledger.read(AGENTS, account) is not None:
            raise DuplicateActive(f"Agent already registered: {account}")

        agent = AgentRecord(
            account=account,
            name=name,
            description=description,
            endpoint=endpoint,
            capabilities=caps,
            registered_at=now,
        )
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(AGENTS, account, agent, 0)
        txn.emit(EventKind.AGENT_REGISTERED, {"account": account, "name": name})
        self._ledger.commit(txn)
        return agent

    def set_agent_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> AgentRecord:
        now = current_time(now)
        require_bool(active, "active")
        agent, version = self.load(account)
        agent.active = active
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(AGENTS, account, agent, version)
        txn.emit(EventKind.AGENT_STATUS_CHANGED, {"account": account, "active": active})
        self._ledger.commit(txn)
        return agent

    def submit_feedback(
        self,
        reviewer: str,
        agent: str,
        score: int,
        job_id: Optional[int] = None,
        comment: str = "",
        now: Optional[int] = None,
    ) -> FeedbackRecord:
        now = current_time(now)
        reviewer = require_account(reviewer, "reviewer")
        max_score = self._resolver.trust().max_feedback_score
        require_int(score, "score", minimum=1, maximum=max_score)
        comment = optional_text(comment, "comment", _MAX_TEXT_LENGTH) or ""
        self.load(agent)
        if reviewer == agent:
            raise InvalidArgument("Agents cannot review themselves")
        if job_id is not None and self._ledger.read(JOBS, job_id) is None:
            raise NotFound(f"Job not found: {job_id}")

        feedback = FeedbackRecord(
            feedback_id=self._ledger.next_id(FEEDBACK),
            reviewer=reviewer,
            agent=agent,
            score=score,
            reviewer_kyc_level=self._oracle.kyc_level(reviewer),
            job_id=job_id,
            comment=comment,
            created_at=now,
        )
        txn = Transaction(actor_id=reviewer, timestamp=now)
        txn.put(FEEDBACK, feedback.feedback_id, feedback, 0)
        txn.emit(EventKind.FEEDBACK_SUBMITTED, {
            "feedback_id": feedback.feedback_id,
            "agent": agent,
            "score": score,
            "reviewer_kyc_level": feedback.reviewer_kyc_level,
        })
        self._ledger.commit(txn)
        return feedback

    # ------------------------------------------------------------------
    # Feedback disputes
    # ------------------------------------------------------------------

    def dispute_feedback(
        self,
        disputer: str,
        feedback_id: int,
        reason: str,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> FeedbackDispute:
        """Contest a rating. Only its agent or its reviewer may, and only once."""
        now = current_time(now)
        escrow = self._resolver.escrow()
        require_text(reason, "reason", escrow.max_reason_length)
        evidence_uri = optional_text(evidence_uri, "evidence_uri", escrow.max_evidence_uri_length)
        feedback, version = self.load_feedback(feedback_id)
        if disputer not in (feedback.agent, feedback.reviewer):
            raise Unauthorized(
                f"Only the agent or the reviewer can dispute feedback {feedback_id}"
            )
        if feedback.disputed:
            raise DuplicateActive(f"Feedback {feedback_id} has already been disputed")
        window = self._resolver.trust().feedback_dispute_window_seconds
        if now > feedback.created_at + window:
            raise InvalidTransition(
                f"Dispute window for feedback {feedback_id} has closed",
                state="closed",
                command="dispute",
            )

        dispute = FeedbackDispute(
            dispute_id=self._ledger.next_id(FEEDBACK_DISPUTES),
            feedback_id=feedback_id,
            disputer=disputer,
            reason=reason,
            evidence_uri=evidence_uri or "",
            created_at=now,
        )
        feedback.disputed = True
        txn = Transaction(actor_id=disputer, timestamp=now)
        txn.put(FEEDBACK, feedback_id, feedback, version)
        txn.put(FEEDBACK_DISPUTES, dispute.dispute_id, dispute, 0)
        txn.emit(EventKind.FEEDBACK_DISPUTED, {
            "dispute_id": dispute.dispute_id,
            "feedback_id": feedback_id,
            "agent": feedback.agent,
            "disputer": disputer,
        })
        self._ledger.commit(txn)
        return dispute

    def resolve_feedback_dispute(
        self,
        resolver: str,
        dispute_id: int,
        upheld: bool,
        notes: str,
        now: Optional[int] = None,
    ) -> FeedbackDispute:
        now = current_time(now)
        require_bool(upheld, "upheld")
        if resolver != self._resolver.platform().owner:
            raise Unauthorized("Only the platform owner can resolve feedback disputes")
        require_text(notes, "notes", self._resolver.arbitration().max_notes_length)
        dispute, version = self.load_feedback_dispute(dispute_id)
        if dispute.status != FeedbackDisputeStatus.PENDING:
            raise AlreadyResolved(f"Feedback dispute {dispute_id} already {dispute.status.value}")
        feedback, feedback_version = self.load_feedback(dispute.feedback_id)

        dispute.status = FeedbackDisputeStatus.UPHELD if upheld else FeedbackDisputeStatus.REJECTED
        dispute.resolver = resolver
        dispute.resolution_notes = notes
        dispute.resolved_at = now
        feedback.resolved = True
        feedback.upheld = upheld
        txn = Transaction(actor_id=resolver, timestamp=now)
        txn.put(FEEDBACK_DISPUTES, dispute_id, dispute, version)
        txn.put(FEEDBACK, feedback.feedback_id, feedback, feedback_version)
        txn.emit(EventKind.FEEDBACK_DISPUTE_RESOLVED, {
            "dispute_id": dispute_id,
            "feedback_id": feedback.feedback_id,
            "agent": feedback.agent,
            "status": dispute.status.value,
        })
        self._ledger.commit(txn)
        return dispute

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_agent(self, account: str) -> AgentRecord:
        return self.load(account)[0]

    def list_agents(self, active_only: bool = False) -> list[AgentRecord]:
        agents = [from_record(AgentRecord, e.value) for e in self._ledger.scan(AGENTS)]
        if active_only:
            agents = [a for a in agents if a.active]
        return agents

    def list_feedback(self, agent: str) -> list[FeedbackRecord]:
        return [
            from_record(FeedbackRecord, e.value)
            for e in self._ledger.scan(FEEDBACK)
            if e.value["agent"] == agent
        ]

    def get_feedback_dispute(self, dispute_id: int) -> FeedbackDispute:
        return self.load_feedback_dispute(dispute_id)[0]

    def list_feedback_disputes(self, pending_only: bool = False) -> list[FeedbackDispute]:
        disputes = [from_record(FeedbackDispute, e.value) for e in self._ledger.scan(FEEDBACK_DISPUTES)]
        if pending_only:
            disputes = [d for d in disputes if d.status == FeedbackDisputeStatus.PENDING]
        return disputes

    def load(self, account: str) -> tuple[AgentRecord, int]:
        """Return (agent, version). Raises NotFound for unknown accounts."""
        entry = self._ledger.read(AGENTS, account)
        if entry is None:
            raise NotFound(f"Agent not found: {account}")
        return from_record(AgentRecord, entry.value), entry.version

    def load_feedback(self, feedback_id: int) -> tuple[FeedbackRecord, int]:
        entry = self._ledger.read(FEEDBACK, feedback_id)
        if entry is None:
            raise NotFound(f"Feedback not found: {feedback_id}")
        return from_record(FeedbackRecord, entry.value), entry.version

    def load_feedback_dispute(self, dispute_id: int) -> tuple[FeedbackDispute, int]:
        entry = self._ledger.read(FEEDBACK_DISPUTES, dispute_id)
        if entry is None:
            raise NotFound(f"Feedback dispute not found: {dispute_id}")
        return from_record(FeedbackDispute, entry.value), entry.version


def _check_capabilities(capabilities: Iterable[str]) -> list[str]:
    if capabilities is None or isinstance(capabilities, str):
        raise InvalidArgument("capabilities must be a list of strings")
    caps: list[str] = []
    for cap in capabilities:
        if not isinstance(cap, str):
            raise InvalidArgument(f"Capabilities must be strings, got {cap!r}")
        if cap.strip():
            caps.append(cap.strip())
    if len(caps) > _MAX_CAPABILITIES:
        raise InvalidArgument(f"At most {_MAX_CAPABILITIES} capabilities allowed")
    return caps
