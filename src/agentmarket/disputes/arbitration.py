"""Dispute & arbitration engine — escalation, split resolution, arbitrator registry.

Resolution of a pending dispute on a job holding F in escrow:

    fee            = floor(F × fee_bps / 10000)      (0 on the timeout path)
    client_amount  = floor((F − fee) × client_bps / 10000)
    agent_amount   = (F − fee) − client_amount       (remainder to the agent)

so ``client_amount + agent_amount + fee == F`` exactly, with no rounding
leakage. A single resolve() serves both resolvers; the Authority decides
which preconditions apply:

    ARBITRATOR              the job's effective arbitrator, registered,
                            active and staked; its fee is charged.
    PLATFORM_OWNER_TIMEOUT  the platform owner, only once the dispute has
                            been pending for the timeout window; no fee.

Arbitrator stake is not slashable. Unstaking is delayed and cancellable.
"""

from __future__ import annotations

from typing import Optional

from agentmarket.checks import (
    current_time,
    optional_text,
    require_account,
    require_bool,
    require_int,
    require_positive,
    require_text,
)
from agentmarket.engine.job_state_machine import JobCommand, JobStateMachine
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
from agentmarket.models.dispute import (
    Arbitrator,
    Authority,
    AuthorityKind,
    Dispute,
    DisputeResolution,
    UnstakeRequest,
    UnstakeStatus,
)
from agentmarket.models.job import Job, JobState
from agentmarket.models.money import apply_bps, percent_to_bps, split_by_bps
from agentmarket.persistence.codec import (
    ARBITRATOR_UNSTAKES,
    ARBITRATORS,
    DISPUTES,
    ESCROW_ARBITRATORS,
    ESCROW_JOBS,
    JOBS,
    from_record,
)
from agentmarket.persistence.event_log import EventKind
from agentmarket.persistence.ledger import Ledger, Transaction
from agentmarket.policy.resolver import PolicyResolver


class ArbitrationEngine:
    """Owns Dispute entities and the arbitrator registry."""

    def __init__(
        self,
        ledger: Ledger,
        resolver: PolicyResolver,
        jobs: JobEngine,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._jobs = jobs

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def raise_dispute(
        self,
        job_id: int,
        caller: str,
        reason: str,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> Dispute:
        """Escalate a job. Either party may dispute.

        A delivered job can only be disputed within the dispute window
        after delivery; past that the client is expected to approve (or
        the agent to claim the deadline).
        """
        now = current_time(now)
        policy = self._resolver.escrow()
        require_text(reason, "reason", policy.max_reason_length)
        evidence_uri = optional_text(evidence_uri, "evidence_uri", policy.max_evidence_uri_length)

        job, version = self._jobs.load(job_id)
        if caller not in (job.client, job.agent):
            raise Unauthorized(f"Only the client or agent can dispute job {job_id}")
        JobStateMachine.require(job, JobCommand.DISPUTE)
        if (
            job.state == JobState.DELIVERED
            and now > job.delivered_at + policy.dispute_window_seconds
        ):
            raise InvalidTransition.for_job(
                job_id, job.state.value, JobCommand.DISPUTE.value,
                detail="dispute window has closed",
            )
        if any(d.is_pending for d in self._disputes_for(job_id)):
            raise DuplicateActive(f"Job {job_id} already has a pending dispute")

        dispute = Dispute(
            dispute_id=self._ledger.next_id(DISPUTES),
            job_id=job_id,
            raised_by=caller,
            reason=reason,
            evidence_uri=evidence_uri,
            arbitrator=self._effective_arbitrator(job),
            created_at=now,
        )
        previous = job.state
        JobStateMachine.apply_transition(job, JobState.DISPUTED, JobCommand.DISPUTE)
        job.updated_at = now

        txn = Transaction(actor_id=caller, timestamp=now)
        txn.put(JOBS, job_id, job, version)
        txn.put(DISPUTES, dispute.dispute_id, dispute, 0)
        txn.emit(EventKind.JOB_TRANSITION, {
            "job_id": job_id,
            "from": previous.value,
            "to": JobState.DISPUTED.value,
            "command": "dispute",
        })
        txn.emit(EventKind.DISPUTE_RAISED, {
            "dispute_id": dispute.dispute_id,
            "job_id": job_id,
            "raised_by": caller,
            "arbitrator": dispute.arbitrator,
        })
        self._ledger.commit(txn)
        return dispute

    def resolve(
        self,
        dispute_id: int,
        client_percent: int,
        notes: str,
        authority: Authority,
        now: Optional[int] = None,
    ) -> Dispute:
        """Resolve a pending dispute and settle the job's escrow."""
        now = current_time(now)
        dispute, dispute_version = self.load_dispute(dispute_id)
        if not dispute.is_pending:
            raise AlreadyResolved(
                f"Dispute {dispute_id} already resolved ({dispute.resolution.value})"
            )
        job, job_version = self._jobs.load(dispute.job_id)
        JobStateMachine.require(job, JobCommand.RESOLVE)
        try:
            client_bps = percent_to_bps(client_percent)
        except ValueError as e:
            raise InvalidArgument(str(e)) from e
        require_text(notes, "notes", self._resolver.arbitration().max_notes_length)

        effective = dispute.arbitrator or self._effective_arbitrator(job)
        arbitrator, arb_version = self._authorize(dispute, authority, effective, now)

        held = job.held_in_escrow
        fee = 0
        if authority.kind == AuthorityKind.ARBITRATOR:
            fee = apply_bps(held, arbitrator.fee_bps)
        client_amount, agent_amount = split_by_bps(held - fee, client_bps)

        txn = Transaction(actor_id=authority.account, timestamp=now)
        txn.transfer(ESCROW_JOBS, job.client, client_amount, memo=f"job:{job.job_id}:arbitration")
        txn.transfer(ESCROW_JOBS, job.agent, agent_amount, memo=f"job:{job.job_id}:arbitration")
        if fee:
            txn.transfer(ESCROW_JOBS, arbitrator.account, fee, memo=f"dispute:{dispute_id}:fee")

        dispute.resolution = DisputeResolution.for_client_bps(client_bps)
        dispute.resolver = authority.account
        dispute.authority = authority.kind
        dispute.arbitrator = effective
        dispute.client_amount = client_amount
        dispute.agent_amount = agent_amount
        dispute.arbitrator_fee = fee
        dispute.funded_at_resolution = held
        dispute.resolution_notes = notes
        dispute.resolved_at = now
        txn.put(DISPUTES, dispute_id, dispute, dispute_version)

        previous = job.state
        job.released_amount = job.funded_amount
        JobStateMachine.apply_transition(job, JobState.ARBITRATED, JobCommand.RESOLVE)
        job.updated_at = now
        txn.put(JOBS, job.job_id, job, job_version)

        if arbitrator is not None:
            # The case counts against the effective arbitrator either way;
            # only a resolution they made themselves counts as handled.
            arbitrator.total_cases += 1
            if authority.kind == AuthorityKind.ARBITRATOR:
                arbitrator.successful_cases += 1
            txn.put(ARBITRATORS, arbitrator.account, arbitrator, arb_version)
        if agent_amount > 0:
            self._jobs.stage_agent_job_count(txn, job.agent)

        txn.emit(EventKind.JOB_TRANSITION, {
            "job_id": job.job_id,
            "from": previous.value,
            "to": JobState.ARBITRATED.value,
            "command": "resolve",
        })
        txn.emit(EventKind.DISPUTE_RESOLVED, {
            "dispute_id": dispute_id,
            "job_id": job.job_id,
            "authority": authority.kind.value,
            "client_bps": client_bps,
            "client_amount": client_amount,
            "agent_amount": agent_amount,
            "arbitrator_fee": fee,
        })
        self._ledger.commit(txn)
        return dispute

    def arbitrate(
        self,
        dispute_id: int,
        caller: str,
        client_percent: int,
        notes: str,
        now: Optional[int] = None,
    ) -> Dispute:
        return self.resolve(dispute_id, client_percent, notes, Authority.arbitrator(caller), now)

    def resolve_timeout(
        self,
        dispute_id: int,
        caller: str,
        client_percent: int,
        notes: str,
        now: Optional[int] = None,
    ) -> Dispute:
        return self.resolve(dispute_id, client_percent, notes, Authority.owner_timeout(caller), now)

    # ------------------------------------------------------------------
    # Arbitrator registry
    # ------------------------------------------------------------------

    def register_arbitrator(
        self, account: str, fee_bps: int, now: Optional[int] = None,
    ) -> Arbitrator:
        """Register, or update the fee of an existing registration."""
        now = current_time(now)
        account = require_account(account, "account")
        require_int(fee_bps, "fee_bps", maximum=self._resolver.arbitration().max_fee_bps)

        entry = self._ledger.read(ARBITRATORS, account)
        if entry is None:
            arbitrator = Arbitrator(account=account, fee_bps=fee_bps, registered_at=now)
            version = 0
        else:
            arbitrator = from_record(Arbitrator, entry.value)
            arbitrator.fee_bps = fee_bps
            version = entry.version
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(ARBITRATORS, account, arbitrator, version)
        txn.emit(EventKind.ARBITRATOR_REGISTERED, {"account": account, "fee_bps": fee_bps})
        self._ledger.commit(txn)
        return arbitrator

    def stake_arbitrator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> Arbitrator:
        now = current_time(now)
        require_positive(amount, "amount")
        arbitrator, version = self.load_arbitrator(account)
        arbitrator.stake += amount
        txn = Transaction(actor_id=account, timestamp=now)
        txn.transfer(account, ESCROW_ARBITRATORS, amount, memo=f"arbitrator:{account}:stake")
        txn.put(ARBITRATORS, account, arbitrator, version)
        txn.emit(EventKind.ARBITRATOR_STAKED, {"account": account, "amount": amount})
        self._ledger.commit(txn)
        return arbitrator

    def set_arbitrator_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> Arbitrator:
        now = current_time(now)
        require_bool(active, "active")
        arbitrator, version = self.load_arbitrator(account)
        min_stake = self._resolver.arbitration().min_stake
        if active and arbitrator.stake < min_stake:
            raise BelowMinimumStake(
                f"Arbitrator {account} stake {arbitrator.stake} below minimum {min_stake}"
            )
        arbitrator.active = active
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(ARBITRATORS, account, arbitrator, version)
        txn.emit(EventKind.ARBITRATOR_STATUS_CHANGED, {"account": account, "active": active})
        self._ledger.commit(txn)
        return arbitrator

    def unstake_arbitrator(
        self,
        account: str,
        amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> UnstakeRequest:
        """Request a delayed withdrawal; ``amount=None`` means the full stake."""
        now = current_time(now)
        arbitrator, version = self.load_arbitrator(account)
        if arbitrator.active:
            raise InvalidTransition(
                f"Arbitrator {account} must be deactivated before unstaking",
                state="active",
                command="unstake",
            )
        if self.active_disputes(account) > 0:
            raise InvalidTransition(
                f"Arbitrator {account} has pending disputes",
                state="active",
                command="unstake",
            )
        if self._pending_unstake(account) is not None:
            raise DuplicateActive(f"Arbitrator {account} already has a pending unstake")
        if amount is None:
            amount = arbitrator.stake
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InsufficientFunds(f"Nothing to unstake for arbitrator {account}")
        if amount > arbitrator.stake:
            raise InsufficientFunds(
                f"Unstake {amount} exceeds stake {arbitrator.stake} of arbitrator {account}"
            )

        request = UnstakeRequest(
            request_id=self._ledger.next_id(ARBITRATOR_UNSTAKES),
            account=account,
            amount=amount,
            requested_at=now,
            available_at=now + self._resolver.arbitration().unstake_delay_seconds,
        )
        arbitrator.stake -= amount
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(ARBITRATORS, account, arbitrator, version)
        txn.put(ARBITRATOR_UNSTAKES, request.request_id, request, 0)
        txn.emit(EventKind.ARBITRATOR_UNSTAKE_REQUESTED, {
            "account": account,
            "request_id": request.request_id,
            "amount": amount,
            "available_at": request.available_at,
        })
        self._ledger.commit(txn)
        return request

    def withdraw_arbitrator_unstake(
        self, account: str, now: Optional[int] = None,
    ) -> UnstakeRequest:
        now = current_time(now)
        request, version = self._require_pending_unstake(account)
        if now < request.available_at:
            raise NotYetEligible(
                f"Unstake {request.request_id} available at {request.available_at}"
            )
        request.status = UnstakeStatus.WITHDRAWN
        request.closed_at = now
        txn = Transaction(actor_id=account, timestamp=now)
        txn.transfer(ESCROW_ARBITRATORS, account, request.amount, memo=f"arbitrator:{account}:unstake")
        txn.put(ARBITRATOR_UNSTAKES, request.request_id, request, version)
        txn.emit(EventKind.ARBITRATOR_UNSTAKE_WITHDRAWN, {
            "account": account,
            "request_id": request.request_id,
            "amount": request.amount,
        })
        self._ledger.commit(txn)
        return request

    def cancel_arbitrator_unstake(
        self, account: str, now: Optional[int] = None,
    ) -> Arbitrator:
        now = current_time(now)
        request, request_version = self._require_pending_unstake(account)
        arbitrator, version = self.load_arbitrator(account)
        arbitrator.stake += request.amount
        request.status = UnstakeStatus.CANCELLED
        request.closed_at = now
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(ARBITRATORS, account, arbitrator, version)
        txn.put(ARBITRATOR_UNSTAKES, request.request_id, request, request_version)
        txn.emit(EventKind.ARBITRATOR_UNSTAKE_CANCELLED, {
            "account": account,
            "request_id": request.request_id,
        })
        self._ledger.commit(txn)
        return arbitrator

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dispute(self, job_id: int) -> Dispute:
        """Latest dispute raised on a job."""
        disputes = self._disputes_for(job_id)
        if not disputes:
            raise NotFound(f"No dispute for job {job_id}")
        return disputes[-1]

    def get_dispute_by_id(self, dispute_id: int) -> Dispute:
        return self.load_dispute(dispute_id)[0]

    def list_disputes(self, pending_only: bool = False) -> list[Dispute]:
        disputes = [from_record(Dispute, e.value) for e in self._ledger.scan(DISPUTES)]
        if pending_only:
            disputes = [d for d in disputes if d.is_pending]
        return disputes

    def get_arbitrator(self, account: str) -> Arbitrator:
        return self.load_arbitrator(account)[0]

    def list_arbitrators(self, active_only: bool = False) -> list[Arbitrator]:
        arbitrators = [from_record(Arbitrator, e.value) for e in self._ledger.scan(ARBITRATORS)]
        if active_only:
            arbitrators = [a for a in arbitrators if a.active]
        return arbitrators

    def active_disputes(self, account: str) -> int:
        """Pending disputes whose effective arbitrator is ``account``."""
        return sum(
            1 for d in self.list_disputes(pending_only=True)
            if d.arbitrator == account
        )

    def list_unstake_requests(self, account: str) -> list[UnstakeRequest]:
        return [
            from_record(UnstakeRequest, e.value)
            for e in self._ledger.scan(ARBITRATOR_UNSTAKES)
            if e.value["account"] == account
        ]

    def load_dispute(self, dispute_id: int) -> tuple[Dispute, int]:
        entry = self._ledger.read(DISPUTES, dispute_id)
        if entry is None:
            raise NotFound(f"Dispute not found: {dispute_id}")
        return from_record(Dispute, entry.value), entry.version

    def load_arbitrator(self, account: str) -> tuple[Arbitrator, int]:
        entry = self._ledger.read(ARBITRATORS, account)
        if entry is None:
            raise NotFound(f"Arbitrator not found: {account}")
        return from_record(Arbitrator, entry.value), entry.version

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _effective_arbitrator(self, job: Job) -> Optional[str]:
        return job.arbitrator or self._resolver.platform().default_arbitrator

    def _authorize(
        self,
        dispute: Dispute,
        authority: Authority,
        effective: Optional[str],
        now: int,
    ) -> tuple[Optional[Arbitrator], int]:
        """Check the authority's preconditions.

        Returns the effective arbitrator's record (or None if it is not a
        registered arbitrator) and its version, for bookkeeping.
        """
        record: Optional[Arbitrator] = None
        version = 0
        if effective is not None:
            entry = self._ledger.read(ARBITRATORS, effective)
            if entry is not None:
                record, version = from_record(Arbitrator, entry.value), entry.version

        if authority.kind == AuthorityKind.ARBITRATOR:
            if effective is None or authority.account != effective:
                raise Unauthorized(
                    f"{authority.account} is not the arbitrator of dispute {dispute.dispute_id}"
                )
            if record is None:
                raise Unauthorized(f"{authority.account} is not a registered arbitrator")
            if not record.active:
                raise Unauthorized(f"Arbitrator {authority.account} is not active")
            min_stake = self._resolver.arbitration().min_stake
            if record.stake < min_stake:
                raise BelowMinimumStake(
                    f"Arbitrator {authority.account} stake {record.stake} "
                    f"below minimum {min_stake}"
                )
        else:
            if authority.account != self._resolver.platform().owner:
                raise Unauthorized("Only the platform owner can resolve timed-out disputes")
            timeout = self._resolver.arbitration().dispute_timeout_seconds
            if now < dispute.created_at + timeout:
                raise NotYetEligible(
                    f"Dispute {dispute.dispute_id} can be resolved by the platform "
                    f"owner from {dispute.created_at + timeout}"
                )
        return record, version

    def _disputes_for(self, job_id: int) -> list[Dispute]:
        return [
            from_record(Dispute, e.value)
            for e in self._ledger.scan(DISPUTES)
            if e.value["job_id"] == job_id
        ]

    def _pending_unstake(self, account: str) -> Optional[tuple[UnstakeRequest, int]]:
        for e in self._ledger.scan(ARBITRATOR_UNSTAKES):
            request = from_record(UnstakeRequest, e.value)
            if request.account == account and request.is_pending:
                return request, e.version
        return None

    def _require_pending_unstake(self, account: str) -> tuple[UnstakeRequest, int]:
        self.load_arbitrator(account)
        pending = self._pending_unstake(account)
        if pending is None:
            raise NotFound(f"No pending unstake for arbitrator {account}")
        return pending
