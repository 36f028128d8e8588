"""Invariant audit — configuration bounds and ledger-wide money conservation.

Both checks return a list of human-readable errors (empty = OK) rather
than raising, so that an operator can see every violation at once.
"""

from __future__ import annotations

from typing import Any

from agentmarket.models.dispute import Dispute, UnstakeRequest
from agentmarket.models.job import Bid, Job, JobState
from agentmarket.models.validation import Challenge, Validator
from agentmarket.persistence.codec import (
    ARBITRATOR_UNSTAKES,
    ARBITRATORS,
    BIDS,
    CHALLENGES,
    DISPUTES,
    ESCROW_ARBITRATORS,
    ESCROW_JOBS,
    ESCROW_VALIDATORS,
    JOBS,
    VALIDATOR_UNSTAKES,
    VALIDATORS,
    from_record,
)
from agentmarket.persistence.ledger import Ledger
from agentmarket.policy.resolver import validate_params


def check_config(params: dict[str, Any]) -> list[str]:
    """Validate a full parameter tree (see PolicyResolver)."""
    return validate_params(params)


def check_ledger(ledger: Ledger) -> list[str]:
    errors: list[str] = []
    jobs = [from_record(Job, e.value) for e in ledger.scan(JOBS)]
    bids = [from_record(Bid, e.value) for e in ledger.scan(BIDS)]

    held = 0
    for job in jobs:
        label = f"job {job.job_id}"
        if not 0 <= job.funded_amount <= job.amount:
            errors.append(
                f"{label}: funded_amount {job.funded_amount} outside [0, {job.amount}]"
            )
        if not 0 <= job.released_amount <= job.funded_amount:
            errors.append(
                f"{label}: released_amount {job.released_amount} exceeds "
                f"funded_amount {job.funded_amount}"
            )
        if job.agent is None and job.state not in (JobState.CREATED, JobState.REFUNDED):
            errors.append(f"{label}: no agent assigned in state {job.state.value}")
        if job.agent is not None:
            stray = [
                b.bid_id for b in bids
                if b.job_id == job.job_id and b.active and not b.selected
            ]
            if stray:
                errors.append(f"{label}: assigned but bids {stray} are still active")
        held += job.funded_amount - job.released_amount

    escrow = ledger.balance(ESCROW_JOBS)
    if escrow != held:
        errors.append(f"{ESCROW_JOBS} balance {escrow} != held in jobs {held}")

    for entry in ledger.scan(DISPUTES):
        dispute = from_record(Dispute, entry.value)
        if dispute.is_pending:
            continue
        paid = dispute.client_amount + dispute.agent_amount + dispute.arbitrator_fee
        if paid != dispute.funded_at_resolution:
            errors.append(
                f"dispute {dispute.dispute_id}: paid {paid} != "
                f"funded {dispute.funded_at_resolution}"
            )

    arbitrator_stake = sum(e.value["stake"] for e in ledger.scan(ARBITRATORS))
    arbitrator_stake += _pending_unstakes(ledger, ARBITRATOR_UNSTAKES)
    if ledger.balance(ESCROW_ARBITRATORS) != arbitrator_stake:
        errors.append(
            f"{ESCROW_ARBITRATORS} balance {ledger.balance(ESCROW_ARBITRATORS)} "
            f"!= staked {arbitrator_stake}"
        )

    validator_stake = sum(
        from_record(Validator, e.value).stake for e in ledger.scan(VALIDATORS)
    )
    validator_stake += _pending_unstakes(ledger, VALIDATOR_UNSTAKES)
    for entry in ledger.scan(CHALLENGES):
        challenge = from_record(Challenge, entry.value)
        if challenge.is_pending and challenge.is_funded:
            validator_stake += challenge.stake_amount
    if ledger.balance(ESCROW_VALIDATORS) != validator_stake:
        errors.append(
            f"{ESCROW_VALIDATORS} balance {ledger.balance(ESCROW_VALIDATORS)} "
            f"!= staked {validator_stake}"
        )

    return errors


def _pending_unstakes(ledger: Ledger, table: str) -> int:
    requests = [from_record(UnstakeRequest, e.value) for e in ledger.scan(table)]
    return sum(r.amount for r in requests if r.is_pending)
