"""Job engine — escrowed jobs, bidding, and the settle-on-approval lifecycle.

Each command reads the entities it needs from the ledger, validates the
command against the job state machine and the caller's role, stages every
write, fund movement and audit event in one Transaction, and commits it.
Either the whole command applies or none of it does: funds never move
without the matching state change, and vice versa.

Fund flows (all through the ``escrow.jobs`` system account):
    fund / select_bid    funder  → escrow
    approve / deadline   escrow  → agent (minus platform fee → owner)
    cancel / timeouts    escrow  → client
    arbitration          escrow  → client, agent, arbitrator (see disputes)

Only this engine and the arbitration engine write ``funded_amount``,
``released_amount`` and bid ``active`` flags.
"""

from __future__ import annotations

from typing import Iterable, Optional

from agentmarket.checks import (
    current_time,
    require_account,
    require_int,
    require_positive,
    require_text,
)
from agentmarket.engine.job_state_machine import JobCommand, JobStateMachine
from agentmarket.errors import (
    DuplicateActive,
    InsufficientFunds,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    NotYetEligible,
    Unauthorized,
)
from agentmarket.models.dispute import Arbitrator
from agentmarket.models.job import Bid, Job, JobState
from agentmarket.models.money import apply_bps
from agentmarket.models.page import Page, paginate
from agentmarket.persistence.codec import (
    AGENTS,
    ARBITRATORS,
    BIDS,
    ESCROW_JOBS,
    JOBS,
    from_record,
)
from agentmarket.persistence.event_log import EventKind
from agentmarket.persistence.ledger import Ledger, Transaction
from agentmarket.policy.resolver import PolicyResolver
from agentmarket.registry.agents import AgentRegistry
from agentmarket.trust.engine import TrustScoreAggregator


class JobEngine:
    """Owns Job and Bid entities.

    Usage:
        engine = JobEngine(ledger, resolver, registry, trust)
        job = engine.create_job("alice", "Title", "Desc", ["report"], 1000)
        bid = engine.submit_bid(job.job_id, "agent-a", 900, 604800, "...")
        job = engine.select_bid(bid.bid_id, caller="alice")
    """

    def __init__(
        self,
        ledger: Ledger,
        resolver: PolicyResolver,
        registry: AgentRegistry,
        trust: TrustScoreAggregator,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._registry = registry
        self._trust = trust

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_job(
        self,
        client: str,
        title: str,
        description: str,
        deliverables: Iterable[str],
        amount: int,
        agent: Optional[str] = None,
        deadline: int = 0,
        arbitrator: Optional[str] = None,
        now: Optional[int] = None,
    ) -> Job:
        """Create a job in CREATED.

        Without ``agent`` the job is open for bidding; with one it is a
        direct hire awaiting funding.
        """
        now = current_time(now)
        policy = self._resolver.escrow()
        client = require_account(client, "client")
        require_text(title, "title", policy.max_title_length)
        require_text(description, "description", policy.max_description_length)
        items = list(deliverables)
        if not items:
            raise InvalidArgument("At least one deliverable is required")
        if len(items) > policy.max_deliverables:
            raise InvalidArgument(
                f"At most {policy.max_deliverables} deliverables allowed, got {len(items)}"
            )
        for i, item in enumerate(items):
            require_text(item, f"deliverable[{i}]", policy.max_deliverable_length)
        require_int(amount, "amount", minimum=policy.min_job_amount)
        require_int(deadline, "deadline")
        if deadline != 0 and deadline <= now:
            raise InvalidArgument("deadline must be in the future")

        if agent is not None:
            agent = require_account(agent, "agent")
            if agent == client:
                raise InvalidArgument("Client cannot hire themselves")
            self._require_active_agent(agent)
        if arbitrator is not None:
            arbitrator = require_account(arbitrator, "arbitrator")
            if arbitrator in (client, agent):
                raise InvalidArgument("Arbitrator cannot be a party to the job")
            self._require_active_arbitrator(arbitrator)

        job = Job(
            job_id=self._ledger.next_id(JOBS),
            client=client,
            agent=agent,
            title=title,
            description=description,
            deliverables=items,
            amount=amount,
            deadline=deadline,
            arbitrator=arbitrator,
            created_at=now,
            updated_at=now,
        )
        txn = Transaction(actor_id=client, timestamp=now)
        txn.put(JOBS, job.job_id, job, 0)
        txn.emit(EventKind.JOB_CREATED, {
            "job_id": job.job_id,
            "client": client,
            "agent": agent,
            "amount": amount,
            "arbitrator": arbitrator,
        })
        self._ledger.commit(txn)
        return job

    # ------------------------------------------------------------------
    # Bidding
    # ------------------------------------------------------------------

    def submit_bid(
        self,
        job_id: int,
        agent: str,
        amount: int,
        timeline: int,
        proposal: str,
        now: Optional[int] = None,
    ) -> Bid:
        """Place a bid on an open job.

        The job itself is rewritten (updated_at) so that a bid racing a
        select_bid on the same job conflicts in the ledger.
        """
        now = current_time(now)
        policy = self._resolver.escrow()
        agent = require_account(agent, "agent")
        require_positive(amount, "amount")
        require_positive(timeline, "timeline")
        require_text(proposal, "proposal", policy.max_proposal_length)

        job, version = self.load(job_id)
        self._require_open(job, JobCommand.SUBMIT_BID)
        if agent == job.client:
            raise InvalidArgument("Clients cannot bid on their own job")
        self._require_active_agent(agent)
        score = self._trust.get_trust_score(agent, now=now)
        if score.total < policy.min_trust_to_bid:
            raise Unauthorized(
                f"Trust score {score.total} below minimum {policy.min_trust_to_bid} to bid"
            )

        active = [b for b in self._bids_for(job_id) if b.active]
        if any(b.agent == agent for b in active):
            raise DuplicateActive(f"Agent {agent} already has an active bid on job {job_id}")
        if len(active) >= policy.max_active_bids_per_job:
            raise DuplicateActive(
                f"Job {job_id} has reached maximum active bids "
                f"({policy.max_active_bids_per_job})"
            )

        bid = Bid(
            bid_id=self._ledger.next_id(BIDS),
            job_id=job_id,
            agent=agent,
            amount=amount,
            timeline=timeline,
            proposal=proposal,
            created_at=now,
        )
        job.updated_at = now
        txn = Transaction(actor_id=agent, timestamp=now)
        txn.put(JOBS, job_id, job, version)
        txn.put(BIDS, bid.bid_id, bid, 0)
        txn.emit(EventKind.BID_SUBMITTED, {
            "job_id": job_id,
            "bid_id": bid.bid_id,
            "agent": agent,
            "amount": amount,
            "timeline": timeline,
        })
        self._ledger.commit(txn)
        return bid

    def select_bid(
        self,
        bid_id: int,
        caller: str,
        fund_amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Job:
        """Hire the bidder and fund the job in one submission.

        The job takes the bid's agent and amount, every other bid on the
        job is deactivated, and ``fund_amount`` (default: the full bid
        amount) moves from the client into escrow. If that covers the
        amount, the job becomes FUNDED.
        """
        now = current_time(now)
        bid, bid_version = self.load_bid(bid_id)
        job, job_version = self.load(bid.job_id)
        if caller != job.client:
            raise Unauthorized(f"Only the client can select a bid on job {job.job_id}")
        self._require_open(job, JobCommand.SELECT_BID)
        if not bid.active:
            raise InvalidTransition(
                f"Bid {bid_id} is not active",
                state="inactive",
                command="select",
            )
        if fund_amount is None:
            fund_amount = bid.amount
        require_int(fund_amount, "fund_amount")
        if fund_amount > bid.amount:
            raise InsufficientFunds(
                f"Funding {fund_amount} exceeds bid amount {bid.amount}"
            )

        txn = Transaction(actor_id=caller, timestamp=now)
        for other, other_version in self._bid_entries_for(job.job_id):
            if other.bid_id == bid_id or not other.active:
                continue
            other.active = False
            txn.put(BIDS, other.bid_id, other, other_version)
        bid.selected = True
        txn.put(BIDS, bid_id, bid, bid_version)

        job.agent = bid.agent
        job.amount = bid.amount
        job.updated_at = now
        txn.emit(EventKind.BID_SELECTED, {
            "job_id": job.job_id,
            "bid_id": bid_id,
            "agent": bid.agent,
            "amount": bid.amount,
        })
        if fund_amount > 0:
            self._stage_funding(txn, job, fund_amount, caller, now)
        txn.put(JOBS, job.job_id, job, job_version)
        self._ledger.commit(txn)
        return job

    def withdraw_bid(self, bid_id: int, caller: str, now: Optional[int] = None) -> Bid:
        now = current_time(now)
        bid, bid_version = self.load_bid(bid_id)
        if caller != bid.agent:
            raise Unauthorized(f"Only the bidder can withdraw bid {bid_id}")
        if bid.selected:
            raise InvalidTransition(
                f"Bid {bid_id} has been selected and cannot be withdrawn",
                state="selected",
                command="withdraw",
            )
        if not bid.active:
            raise InvalidTransition(
                f"Bid {bid_id} is not active",
                state="inactive",
                command="withdraw",
            )
        job, job_version = self.load(bid.job_id)
        JobStateMachine.require(job, JobCommand.WITHDRAW_BID)

        bid.active = False
        job.updated_at = now
        txn = Transaction(actor_id=caller, timestamp=now)
        txn.put(BIDS, bid_id, bid, bid_version)
        txn.put(JOBS, job.job_id, job, job_version)
        txn.emit(EventKind.BID_WITHDRAWN, {"job_id": job.job_id, "bid_id": bid_id})
        self._ledger.commit(txn)
        return bid

    # ------------------------------------------------------------------
    # Funding and lifecycle
    # ------------------------------------------------------------------

    def fund_job(
        self,
        job_id: int,
        amount: int,
        caller: str,
        now: Optional[int] = None,
    ) -> Job:
        """Add funds to an assigned job. Any account may fund.

        Partial funding persists in CREATED; the job becomes FUNDED when
        ``funded_amount`` reaches ``amount``.
        """
        now = current_time(now)
        caller = require_account(caller, "caller")
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.FUND)
        if job.agent is None:
            raise InvalidTransition.for_job(
                job_id, job.state.value, JobCommand.FUND.value,
                detail="no agent assigned",
            )
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InsufficientFunds(f"Funding amount must be positive, got {amount!r}")
        if amount > job.remaining_to_fund:
            raise InsufficientFunds(
                f"Funding {amount} exceeds remaining {job.remaining_to_fund} on job {job_id}"
            )

        txn = Transaction(actor_id=caller, timestamp=now)
        self._stage_funding(txn, job, amount, caller, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def accept_job(self, job_id: int, caller: str, now: Optional[int] = None) -> Job:
        return self._agent_transition(job_id, caller, JobState.ACCEPTED, JobCommand.ACCEPT, now)

    def start_job(self, job_id: int, caller: str, now: Optional[int] = None) -> Job:
        return self._agent_transition(job_id, caller, JobState.INPROGRESS, JobCommand.START, now)

    def deliver_job(
        self,
        job_id: int,
        caller: str,
        evidence_uri: str,
        now: Optional[int] = None,
    ) -> Job:
        now = current_time(now)
        policy = self._resolver.escrow()
        require_text(evidence_uri, "evidence_uri", policy.max_evidence_uri_length)
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.DELIVER)
        self._require_agent(job, caller, JobCommand.DELIVER)

        txn = Transaction(actor_id=caller, timestamp=now)
        job.evidence_uri = evidence_uri
        job.delivered_at = now
        self._stage_transition(txn, job, JobState.DELIVERED, JobCommand.DELIVER, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def approve_delivery(self, job_id: int, caller: str, now: Optional[int] = None) -> Job:
        """Client approves: release escrow to the agent, less the platform fee."""
        now = current_time(now)
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.APPROVE)
        if caller != job.client:
            raise Unauthorized(f"Only the client can approve job {job_id}")

        txn = Transaction(actor_id=caller, timestamp=now)
        self._stage_release(txn, job, JobCommand.APPROVE, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def cancel_job(self, job_id: int, caller: str, now: Optional[int] = None) -> Job:
        """Client cancels before work starts: refund escrow, close bids."""
        now = current_time(now)
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.CANCEL)
        if caller != job.client:
            raise Unauthorized(f"Only the client can cancel job {job_id}")

        txn = Transaction(actor_id=caller, timestamp=now)
        for bid, bid_version in self._bid_entries_for(job_id):
            if bid.active:
                bid.active = False
                txn.put(BIDS, bid.bid_id, bid, bid_version)
        self._stage_refund(txn, job, JobCommand.CANCEL, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def claim_timeout(self, job_id: int, caller: str, now: Optional[int] = None) -> Job:
        """Settle a job whose deadline has passed.

        DELIVERED: the agent claims payment as if approved.
        FUNDED/ACCEPTED/INPROGRESS: the client reclaims the escrow.
        """
        now = current_time(now)
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.CLAIM_TIMEOUT)
        if job.deadline == 0:
            raise InvalidTransition.for_job(
                job_id, job.state.value, JobCommand.CLAIM_TIMEOUT.value,
                detail="job has no deadline",
            )
        if now <= job.deadline:
            raise NotYetEligible(f"Deadline of job {job_id} has not passed yet")

        txn = Transaction(actor_id=caller, timestamp=now)
        if job.state == JobState.DELIVERED:
            if caller != job.agent:
                raise Unauthorized(f"Only the agent can claim a delivered job {job_id}")
            self._stage_release(txn, job, JobCommand.CLAIM_TIMEOUT, now)
        else:
            if caller != job.client:
                raise Unauthorized(f"Only the client can reclaim job {job_id}")
            self._stage_refund(txn, job, JobCommand.CLAIM_TIMEOUT, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def claim_acceptance_timeout(
        self, job_id: int, caller: str, now: Optional[int] = None,
    ) -> Job:
        """Client reclaims a funded job the agent never accepted."""
        now = current_time(now)
        job, version = self.load(job_id)
        JobStateMachine.require(job, JobCommand.CLAIM_ACCEPTANCE_TIMEOUT)
        if caller != job.client:
            raise Unauthorized(f"Only the client can reclaim job {job_id}")
        timeout = self._resolver.escrow().acceptance_timeout_seconds
        if now <= job.funded_at + timeout:
            raise NotYetEligible(
                f"Acceptance window of job {job_id} is still open"
            )

        txn = Transaction(actor_id=caller, timestamp=now)
        self._stage_refund(txn, job, JobCommand.CLAIM_ACCEPTANCE_TIMEOUT, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: int) -> Job:
        return self.load(job_id)[0]

    def get_bid(self, bid_id: int) -> Bid:
        return self.load_bid(bid_id)[0]

    def list_jobs(
        self,
        client: Optional[str] = None,
        agent: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 100,
        cursor: Optional[int] = None,
    ) -> Page[Job]:
        jobs = [from_record(Job, e.value) for e in self._ledger.scan(JOBS)]
        if client is not None:
            jobs = [j for j in jobs if j.client == client]
        if agent is not None:
            jobs = [j for j in jobs if j.agent == agent]
        if state is not None:
            jobs = [j for j in jobs if j.state == state]
        return paginate(jobs, key=lambda j: j.job_id, limit=limit, cursor=cursor)

    def list_open_jobs(self, limit: int = 100, cursor: Optional[int] = None) -> Page[Job]:
        jobs = [from_record(Job, e.value) for e in self._ledger.scan(JOBS)]
        return paginate(
            [j for j in jobs if j.is_open],
            key=lambda j: j.job_id, limit=limit, cursor=cursor,
        )

    def list_bids(self, job_id: int, active_only: bool = False) -> list[Bid]:
        self.load(job_id)
        bids = self._bids_for(job_id)
        if active_only:
            bids = [b for b in bids if b.active]
        return bids

    def load(self, job_id: int) -> tuple[Job, int]:
        """Return (job, version). Raises NotFound for unknown IDs."""
        entry = self._ledger.read(JOBS, job_id)
        if entry is None:
            raise NotFound(f"Job not found: {job_id}")
        return from_record(Job, entry.value), entry.version

    def load_bid(self, bid_id: int) -> tuple[Bid, int]:
        entry = self._ledger.read(BIDS, bid_id)
        if entry is None:
            raise NotFound(f"Bid not found: {bid_id}")
        return from_record(Bid, entry.value), entry.version

    # ------------------------------------------------------------------
    # Settlement helpers (shared with the arbitration engine)
    # ------------------------------------------------------------------

    def stage_agent_job_count(self, txn: Transaction, agent: str) -> None:
        """Increment an agent's completed-job counter inside ``txn``."""
        record, version = self._registry.load(agent)
        record.total_jobs += 1
        txn.put(AGENTS, agent, record, version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _agent_transition(
        self,
        job_id: int,
        caller: str,
        target: JobState,
        command: JobCommand,
        now: Optional[int],
    ) -> Job:
        now = current_time(now)
        job, version = self.load(job_id)
        JobStateMachine.require(job, command)
        self._require_agent(job, caller, command)
        txn = Transaction(actor_id=caller, timestamp=now)
        self._stage_transition(txn, job, target, command, now)
        txn.put(JOBS, job_id, job, version)
        self._ledger.commit(txn)
        return job

    def _stage_transition(
        self,
        txn: Transaction,
        job: Job,
        target: JobState,
        command: JobCommand,
        now: int,
    ) -> None:
        previous = job.state
        JobStateMachine.apply_transition(job, target, command)
        job.updated_at = now
        txn.emit(EventKind.JOB_TRANSITION, {
            "job_id": job.job_id,
            "from": previous.value,
            "to": target.value,
            "command": command.name.lower(),
        })

    def _stage_funding(
        self,
        txn: Transaction,
        job: Job,
        amount: int,
        funder: str,
        now: int,
    ) -> None:
        job.funded_amount += amount
        job.updated_at = now
        txn.transfer(funder, ESCROW_JOBS, amount, memo=f"job:{job.job_id}:fund")
        txn.emit(EventKind.JOB_FUNDED, {
            "job_id": job.job_id,
            "funder": funder,
            "amount": amount,
            "funded_amount": job.funded_amount,
        })
        if job.funded_amount == job.amount and job.state == JobState.CREATED:
            job.funded_at = now
            self._stage_transition(txn, job, JobState.FUNDED, JobCommand.FUND, now)

    def _stage_release(
        self, txn: Transaction, job: Job, command: JobCommand, now: int,
    ) -> None:
        held = job.held_in_escrow
        platform = self._resolver.platform()
        fee = apply_bps(held, platform.platform_fee_bps)
        txn.transfer(ESCROW_JOBS, platform.owner, fee, memo=f"job:{job.job_id}:platform_fee")
        txn.transfer(ESCROW_JOBS, job.agent, held - fee, memo=f"job:{job.job_id}:release")
        job.released_amount = job.funded_amount
        self._stage_transition(txn, job, JobState.COMPLETED, command, now)
        self.stage_agent_job_count(txn, job.agent)

    def _stage_refund(
        self, txn: Transaction, job: Job, command: JobCommand, now: int,
    ) -> None:
        txn.transfer(ESCROW_JOBS, job.client, job.held_in_escrow, memo=f"job:{job.job_id}:refund")
        job.released_amount = job.funded_amount
        self._stage_transition(txn, job, JobState.REFUNDED, command, now)

    def _require_open(self, job: Job, command: JobCommand) -> None:
        JobStateMachine.require(job, command)
        if job.agent is not None:
            raise InvalidTransition.for_job(
                job.job_id, job.state.value, command.value,
                detail="job already has an agent",
            )

    def _require_agent(self, job: Job, caller: str, command: JobCommand) -> None:
        if caller != job.agent:
            raise Unauthorized(
                f"Only the assigned agent can {command.value} job {job.job_id}"
            )

    def _require_active_agent(self, account: str) -> None:
        agent, _ = self._registry.load(account)
        if not agent.active:
            raise Unauthorized(f"Agent {account} is not active")

    def _require_active_arbitrator(self, account: str) -> None:
        entry = self._ledger.read(ARBITRATORS, account)
        if entry is None:
            raise NotFound(f"Arbitrator not found: {account}")
        if not from_record(Arbitrator, entry.value).active:
            raise Unauthorized(f"Arbitrator {account} is not active")

    def _bid_entries_for(self, job_id: int) -> list[tuple[Bid, int]]:
        return [
            (from_record(Bid, e.value), e.version)
            for e in self._ledger.scan(BIDS)
            if e.value["job_id"] == job_id
        ]

    def _bids_for(self, job_id: int) -> list[Bid]:
        return [bid for bid, _ in self._bid_entries_for(job_id)]
