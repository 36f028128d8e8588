"""Market service — unified command boundary for the marketplace core.

This is the primary interface for programmatic access. It wires every
engine to one ledger and one policy resolver:
- Agent registry and feedback
- Job lifecycle and bidding (escrow)
- Disputes and the arbitrator registry
- Validator staking, validations and challenges
- Trust score aggregation

Every command returns a ServiceResult. Rule violations raised by the
engines (MarketError) are caught here and returned as failed results
carrying the message and a stable error code; nothing else is caught,
so programming errors still surface. Commands are never retried: each
one either committed in full or was rejected in full.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from agentmarket import __version__
from agentmarket.disputes.arbitration import ArbitrationEngine
from agentmarket.errors import MarketError
from agentmarket.escrow.jobs import JobEngine
from agentmarket.identity.oracle import IdentityOracle, StaticIdentityOracle
from agentmarket.invariants import check_config, check_ledger
from agentmarket.models.job import JobState
from agentmarket.models.page import Page
from agentmarket.persistence.codec import (
    ESCROW_ARBITRATORS,
    ESCROW_JOBS,
    ESCROW_VALIDATORS,
    JOBS,
    to_record,
)
from agentmarket.persistence.event_log import EventLog
from agentmarket.persistence.ledger import InMemoryLedger
from agentmarket.persistence.state_store import StateStore
from agentmarket.policy.resolver import PolicyResolver
from agentmarket.registry.agents import AgentRegistry
from agentmarket.trust.engine import TrustScoreAggregator
from agentmarket.validation.engine import ValidationEngine

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"
STATE_FILENAME = "state.json"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


def _as_data(value: Any) -> dict[str, Any]:
    if isinstance(value, Page):
        return {
            "items": [to_record(item) for item in value.items],
            "next_cursor": value.next_cursor,
        }
    if isinstance(value, list):
        return {"items": [to_record(item) for item in value]}
    if is_dataclass(value):
        return to_record(value)
    return {"value": value}


class MarketService:
    """Marketplace facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = MarketService(resolver)

        service.register_agent("agent-a", "Agent A")
        result = service.create_job("alice", "Title", "Desc", ["report"], 1000)
        result = service.submit_bid(result.data["job_id"], "agent-a", 900, 604800, "...")
        result = service.select_bid(result.data["bid_id"], caller="alice")

    Persistence (optional):
        service = MarketService.open(config_dir, data_dir)
        # Audit events go to data_dir/events.jsonl, state snapshots to
        # data_dir/state.json; both are loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[InMemoryLedger] = None,
        oracle: Optional[IdentityOracle] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger if ledger is not None else InMemoryLedger()
        self._oracle = oracle if oracle is not None else StaticIdentityOracle()
        self._registry = AgentRegistry(self._ledger, resolver, self._oracle)
        self._trust = TrustScoreAggregator(self._ledger, resolver.trust(), self._oracle)
        self._jobs = JobEngine(self._ledger, resolver, self._registry, self._trust)
        self._disputes = ArbitrationEngine(self._ledger, resolver, self._jobs)
        self._validation = ValidationEngine(self._ledger, resolver)

    @classmethod
    def open(
        cls,
        config_dir: Path,
        data_dir: Path,
        oracle: Optional[IdentityOracle] = None,
    ) -> MarketService:
        """Create a service with durable persistence under ``data_dir``."""
        data_dir = Path(data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        resolver = PolicyResolver.from_config_dir(config_dir)
        ledger = InMemoryLedger(
            event_log=EventLog(storage_path=data_dir / EVENTS_FILENAME),
            state_store=StateStore(data_dir / STATE_FILENAME),
        )
        return cls(resolver, ledger=ledger, oracle=oracle)

    @property
    def ledger(self) -> InMemoryLedger:
        return self._ledger

    @property
    def oracle(self) -> IdentityOracle:
        return self._oracle

    # ------------------------------------------------------------------
    # Agents and feedback
    # ------------------------------------------------------------------

    def register_agent(
        self,
        account: str,
        name: str,
        description: str = "",
        endpoint: str = "",
        capabilities: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("register_agent", lambda: self._registry.register_agent(
            account, name, description, endpoint, capabilities, now=now,
        ))

    def set_agent_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("set_agent_active", lambda: self._registry.set_agent_active(
            account, active, now=now,
        ))

    def submit_feedback(
        self,
        reviewer: str,
        agent: str,
        score: int,
        job_id: Optional[int] = None,
        comment: str = "",
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("submit_feedback", lambda: self._registry.submit_feedback(
            reviewer, agent, score, job_id=job_id, comment=comment, now=now,
        ))

    def dispute_feedback(
        self,
        disputer: str,
        feedback_id: int,
        reason: str,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("dispute_feedback", lambda: self._registry.dispute_feedback(
            disputer, feedback_id, reason, evidence_uri=evidence_uri, now=now,
        ))

    def resolve_feedback_dispute(
        self,
        resolver: str,
        dispute_id: int,
        upheld: bool,
        notes: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command(
            "resolve_feedback_dispute",
            lambda: self._registry.resolve_feedback_dispute(resolver, dispute_id, upheld, notes, now=now),
        )

    def get_agent(self, account: str) -> ServiceResult:
        return self._query(lambda: self._registry.get_agent(account))

    def list_agents(self, active_only: bool = False) -> ServiceResult:
        return self._query(lambda: self._registry.list_agents(active_only=active_only))

    def list_feedback(self, agent: str) -> ServiceResult:
        return self._query(lambda: self._registry.list_feedback(agent))

    def get_feedback_dispute(self, dispute_id: int) -> ServiceResult:
        return self._query(lambda: self._registry.get_feedback_dispute(dispute_id))

    def list_feedback_disputes(self, pending_only: bool = False) -> ServiceResult:
        return self._query(lambda: self._registry.list_feedback_disputes(pending_only=pending_only))

    def get_trust_score(self, account: str, now: Optional[int] = None) -> ServiceResult:
        return self._query(lambda: self._trust.get_trust_score(account, now=now))

    # ------------------------------------------------------------------
    # Jobs and bidding
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
    ) -> ServiceResult:
        return self._command("create_job", lambda: self._jobs.create_job(
            client, title, description, deliverables, amount,
            agent=agent, deadline=deadline, arbitrator=arbitrator, now=now,
        ))

    def submit_bid(
        self,
        job_id: int,
        agent: str,
        amount: int,
        timeline: int,
        proposal: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("submit_bid", lambda: self._jobs.submit_bid(
            job_id, agent, amount, timeline, proposal, now=now,
        ))

    def select_bid(
        self,
        bid_id: int,
        caller: str,
        fund_amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("select_bid", lambda: self._jobs.select_bid(
            bid_id, caller, fund_amount=fund_amount, now=now,
        ))

    def withdraw_bid(self, bid_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("withdraw_bid", lambda: self._jobs.withdraw_bid(
            bid_id, caller, now=now,
        ))

    def fund_job(
        self, job_id: int, amount: int, caller: str, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("fund_job", lambda: self._jobs.fund_job(
            job_id, amount, caller, now=now,
        ))

    def accept_job(self, job_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("accept_job", lambda: self._jobs.accept_job(job_id, caller, now=now))

    def start_job(self, job_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("start_job", lambda: self._jobs.start_job(job_id, caller, now=now))

    def deliver_job(
        self, job_id: int, caller: str, evidence_uri: str, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("deliver_job", lambda: self._jobs.deliver_job(
            job_id, caller, evidence_uri, now=now,
        ))

    def approve_delivery(self, job_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("approve_delivery", lambda: self._jobs.approve_delivery(
            job_id, caller, now=now,
        ))

    def cancel_job(self, job_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("cancel_job", lambda: self._jobs.cancel_job(job_id, caller, now=now))

    def claim_timeout(self, job_id: int, caller: str, now: Optional[int] = None) -> ServiceResult:
        return self._command("claim_timeout", lambda: self._jobs.claim_timeout(
            job_id, caller, now=now,
        ))

    def claim_acceptance_timeout(
        self, job_id: int, caller: str, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("claim_acceptance_timeout", lambda: self._jobs.claim_acceptance_timeout(
            job_id, caller, now=now,
        ))

    def get_job(self, job_id: int) -> ServiceResult:
        return self._query(lambda: self._jobs.get_job(job_id))

    def get_bid(self, bid_id: int) -> ServiceResult:
        return self._query(lambda: self._jobs.get_bid(bid_id))

    def list_jobs(
        self,
        client: Optional[str] = None,
        agent: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 100,
        cursor: Optional[int] = None,
    ) -> ServiceResult:
        return self._query(lambda: self._jobs.list_jobs(
            client=client, agent=agent, state=state, limit=limit, cursor=cursor,
        ))

    def list_open_jobs(self, limit: int = 100, cursor: Optional[int] = None) -> ServiceResult:
        return self._query(lambda: self._jobs.list_open_jobs(limit=limit, cursor=cursor))

    def list_bids(self, job_id: int, active_only: bool = False) -> ServiceResult:
        return self._query(lambda: self._jobs.list_bids(job_id, active_only=active_only))

    # ------------------------------------------------------------------
    # Disputes and arbitrators
    # ------------------------------------------------------------------

    def raise_dispute(
        self,
        job_id: int,
        caller: str,
        reason: str,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("raise_dispute", lambda: self._disputes.raise_dispute(
            job_id, caller, reason, evidence_uri=evidence_uri, now=now,
        ))

    def arbitrate(
        self,
        dispute_id: int,
        caller: str,
        client_percent: int,
        notes: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("arbitrate", lambda: self._disputes.arbitrate(
            dispute_id, caller, client_percent, notes, now=now,
        ))

    def resolve_timeout(
        self,
        dispute_id: int,
        caller: str,
        client_percent: int,
        notes: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("resolve_timeout", lambda: self._disputes.resolve_timeout(
            dispute_id, caller, client_percent, notes, now=now,
        ))

    def register_arbitrator(
        self, account: str, fee_bps: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("register_arbitrator", lambda: self._disputes.register_arbitrator(
            account, fee_bps, now=now,
        ))

    def stake_arbitrator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("stake_arbitrator", lambda: self._disputes.stake_arbitrator(
            account, amount, now=now,
        ))

    def set_arbitrator_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("set_arbitrator_active", lambda: self._disputes.set_arbitrator_active(
            account, active, now=now,
        ))

    def unstake_arbitrator(
        self, account: str, amount: Optional[int] = None, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("unstake_arbitrator", lambda: self._disputes.unstake_arbitrator(
            account, amount=amount, now=now,
        ))

    def withdraw_arbitrator_unstake(
        self, account: str, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command(
            "withdraw_arbitrator_unstake",
            lambda: self._disputes.withdraw_arbitrator_unstake(account, now=now),
        )

    def cancel_arbitrator_unstake(
        self, account: str, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command(
            "cancel_arbitrator_unstake",
            lambda: self._disputes.cancel_arbitrator_unstake(account, now=now),
        )

    def get_dispute(self, job_id: int) -> ServiceResult:
        return self._query(lambda: self._disputes.get_dispute(job_id))

    def get_dispute_by_id(self, dispute_id: int) -> ServiceResult:
        return self._query(lambda: self._disputes.get_dispute_by_id(dispute_id))

    def list_disputes(self, pending_only: bool = False) -> ServiceResult:
        return self._query(lambda: self._disputes.list_disputes(pending_only=pending_only))

    def get_arbitrator(self, account: str) -> ServiceResult:
        return self._query(lambda: self._disputes.get_arbitrator(account))

    def list_arbitrators(self, active_only: bool = False) -> ServiceResult:
        return self._query(lambda: self._disputes.list_arbitrators(active_only=active_only))

    def list_arbitrator_unstake_requests(self, account: str) -> ServiceResult:
        return self._query(lambda: self._disputes.list_unstake_requests(account))

    # ------------------------------------------------------------------
    # Validators, validations, challenges
    # ------------------------------------------------------------------

    def register_validator(
        self,
        account: str,
        method: str,
        specializations: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("register_validator", lambda: self._validation.register_validator(
            account, method, specializations, now=now,
        ))

    def update_validator(
        self,
        account: str,
        method: str,
        specializations: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("update_validator", lambda: self._validation.update_validator(
            account, method, specializations, now=now,
        ))

    def set_validator_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("set_validator_active", lambda: self._validation.set_validator_active(
            account, active, now=now,
        ))

    def stake_validator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("stake_validator", lambda: self._validation.stake_validator(
            account, amount, now=now,
        ))

    def unstake_validator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("unstake_validator", lambda: self._validation.unstake_validator(
            account, amount, now=now,
        ))

    def withdraw_unstake(
        self, account: str, request_id: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("withdraw_unstake", lambda: self._validation.withdraw_unstake(
            account, request_id, now=now,
        ))

    def cancel_validator_unstake(
        self, account: str, request_id: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command(
            "cancel_validator_unstake",
            lambda: self._validation.cancel_validator_unstake(account, request_id, now=now),
        )

    def submit_validation(
        self,
        validator: str,
        agent: str,
        job_hash: str,
        result: str,
        confidence: int,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("submit_validation", lambda: self._validation.submit_validation(
            validator, agent, job_hash, result, confidence,
            evidence_uri=evidence_uri, now=now,
        ))

    def challenge_validation(
        self,
        challenger: str,
        validation_id: int,
        reason: str,
        evidence_uri: Optional[str] = None,
        stake_amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("challenge_validation", lambda: self._validation.challenge_validation(
            challenger, validation_id, reason,
            evidence_uri=evidence_uri, stake_amount=stake_amount, now=now,
        ))

    def fund_challenge(
        self, challenger: str, challenge_id: int, amount: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("fund_challenge", lambda: self._validation.fund_challenge(
            challenger, challenge_id, amount, now=now,
        ))

    def cancel_challenge(
        self, challenger: str, challenge_id: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("cancel_challenge", lambda: self._validation.cancel_challenge(
            challenger, challenge_id, now=now,
        ))

    def expire_challenge(
        self, caller: str, challenge_id: int, now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("expire_challenge", lambda: self._validation.expire_challenge(
            caller, challenge_id, now=now,
        ))

    def resolve_challenge(
        self,
        resolver: str,
        challenge_id: int,
        upheld: bool,
        notes: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("resolve_challenge", lambda: self._validation.resolve_challenge(
            resolver, challenge_id, upheld, notes, now=now,
        ))

    def slash_validator(
        self,
        caller: str,
        account: str,
        amount: int,
        reason: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self._command("slash_validator", lambda: self._validation.slash_validator(
            caller, account, amount, reason, now=now,
        ))

    def get_validator(self, account: str) -> ServiceResult:
        return self._query(lambda: self._validation.get_validator(account))

    def list_validators(
        self,
        active_only: bool = False,
        specialization: Optional[str] = None,
        min_accuracy_bps: int = 0,
    ) -> ServiceResult:
        return self._query(lambda: self._validation.list_validators(
            active_only=active_only,
            specialization=specialization,
            min_accuracy_bps=min_accuracy_bps,
        ))

    def get_validation(self, validation_id: int) -> ServiceResult:
        return self._query(lambda: self._validation.get_validation(validation_id))

    def list_validations(
        self,
        agent: Optional[str] = None,
        validator: Optional[str] = None,
        job_hash: Optional[str] = None,
    ) -> ServiceResult:
        return self._query(lambda: self._validation.list_validations(
            agent=agent, validator=validator, job_hash=job_hash,
        ))

    def list_unstake_requests(self, account: str) -> ServiceResult:
        return self._query(lambda: self._validation.list_unstake_requests(account))

    def get_challenge(self, challenge_id: int) -> ServiceResult:
        return self._query(lambda: self._validation.get_challenge(challenge_id))

    def list_challenges(self, validation_id: Optional[int] = None) -> ServiceResult:
        return self._query(lambda: self._validation.list_challenges(validation_id=validation_id))

    # ------------------------------------------------------------------
    # Status and audit
    # ------------------------------------------------------------------

    def check_invariants(self) -> ServiceResult:
        errors = check_config(self._resolver.params()) + check_ledger(self._ledger)
        if errors:
            logger.warning("Invariant check failed: %d violation(s)", len(errors))
            return ServiceResult(success=False, errors=errors, error_code="InvariantViolation")
        return ServiceResult(success=True)

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        jobs = self._ledger.scan(JOBS)
        by_state: dict[str, int] = {}
        for entry in jobs:
            state = entry.value["state"]
            by_state[state] = by_state.get(state, 0) + 1
        return {
            "version": __version__,
            "agents": {
                "total": len(self._registry.list_agents()),
                "active": len(self._registry.list_agents(active_only=True)),
            },
            "jobs": {
                "total": len(jobs),
                "by_state": by_state,
            },
            "disputes": {
                "total": len(self._disputes.list_disputes()),
                "pending": len(self._disputes.list_disputes(pending_only=True)),
            },
            "arbitrators": {
                "total": len(self._disputes.list_arbitrators()),
                "active": len(self._disputes.list_arbitrators(active_only=True)),
            },
            "validators": {
                "total": len(self._validation.list_validators()),
                "active": len(self._validation.list_validators(active_only=True)),
                "validations": len(self._validation.list_validations()),
            },
            "escrow": {
                ESCROW_JOBS: self._ledger.balance(ESCROW_JOBS),
                ESCROW_ARBITRATORS: self._ledger.balance(ESCROW_ARBITRATORS),
                ESCROW_VALIDATORS: self._ledger.balance(ESCROW_VALIDATORS),
            },
            "commits": self._ledger.commit_count,
            "events": self._ledger.event_log.count,
            "persistence_degraded": self._ledger.persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _command(self, command: str, action: Callable[[], Any]) -> ServiceResult:
        try:
            value = action()
        except MarketError as e:
            logger.info("Rejected %s [%s]: %s", command, e.code, e)
            return ServiceResult(success=False, errors=[str(e)], error_code=e.code)
        logger.info("Accepted %s", command)
        return ServiceResult(success=True, data=_as_data(value))

    def _query(self, action: Callable[[], Any]) -> ServiceResult:
        try:
            value = action()
        except MarketError as e:
            return ServiceResult(success=False, errors=[str(e)], error_code=e.code)
        return ServiceResult(success=True, data=_as_data(value))
