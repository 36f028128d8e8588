"""Validation engine — validator staking, validations, challenges, slashing.

Validators stake into ``escrow.validators`` and record verdicts on agents'
work. A verdict never moves a job's state; it is reputation input only.

Challenge lifecycle:
    open ──fund──▶ funded ──resolve──▶ UPHELD | REJECTED
      │                                 (platform owner, funded only)
      └──cancel / expire──▶ CANCELLED   (unfunded only)

Opening a challenge flips the validation's ``challenged`` flag, which is
never reset: a validation can be challenged at most once, even if that
challenge is later cancelled.

Validators register inactive and may only switch on once staked to the
minimum. Any path that leaves an active validator below the minimum
(full unstake, slashing) switches it off.

On resolution:
    UPHELD    slash = floor(validator.stake × slash_bps / 10000)
              validator.stake −= slash; challenger receives stake + slash;
              incorrect_validations += 1
    REJECTED  the challenge stake is added to the validator's stake
Both recompute accuracy and release the validator's pending challenge.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from agentmarket.checks import (
    current_time,
    optional_text,
    require_account,
    require_bool,
    require_int,
    require_positive,
    require_text,
)
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
from agentmarket.models.dispute import UnstakeRequest, UnstakeStatus
from agentmarket.models.money import apply_bps
from agentmarket.models.validation import (
    Challenge,
    ChallengeStatus,
    Validation,
    ValidationResult,
    Validator,
    compute_accuracy,
)
from agentmarket.persistence.codec import (
    AGENTS,
    CHALLENGES,
    ESCROW_VALIDATORS,
    VALIDATIONS,
    VALIDATOR_UNSTAKES,
    VALIDATORS,
    from_record,
)
from agentmarket.persistence.event_log import EventKind
from agentmarket.persistence.ledger import Ledger, Transaction
from agentmarket.policy.resolver import PolicyResolver


class ValidationEngine:
    """Owns Validator, Validation, Challenge and validator unstake entities."""

    def __init__(self, ledger: Ledger, resolver: PolicyResolver) -> None:
        self._ledger = ledger
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Validator registry
    # ------------------------------------------------------------------

    def register_validator(
        self,
        account: str,
        method: str,
        specializations: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> Validator:
        """Register inactive with zero stake. Stake, then switch on."""
        now = current_time(now)
        account = require_account(account, "account")
        specs = self._check_profile(method, specializations)
        if self._ledger.read(VALIDATORS, account) is not None:
            raise DuplicateActive(f"Validator already registered: {account}")

        validator = Validator(
            account=account,
            method=method,
            specializations=specs,
            active=False,
            registered_at=now,
        )
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(VALIDATORS, account, validator, 0)
        txn.emit(EventKind.VALIDATOR_REGISTERED, {
            "account": account,
            "method": method,
            "specializations": specs,
        })
        self._ledger.commit(txn)
        return validator

    def update_validator(
        self,
        account: str,
        method: str,
        specializations: Iterable[str] = (),
        now: Optional[int] = None,
    ) -> Validator:
        now = current_time(now)
        specs = self._check_profile(method, specializations)
        validator, version = self.load_validator(account)
        validator.method = method
        validator.specializations = specs
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(VALIDATORS, account, validator, version)
        txn.emit(EventKind.VALIDATOR_UPDATED, {
            "account": account,
            "method": method,
            "specializations": specs,
        })
        self._ledger.commit(txn)
        return validator

    def set_validator_active(
        self, account: str, active: bool, now: Optional[int] = None,
    ) -> Validator:
        now = current_time(now)
        require_bool(active, "active")
        validator, version = self.load_validator(account)
        min_stake = self._resolver.validation().min_stake
        if active and validator.stake < min_stake:
            raise BelowMinimumStake(
                f"Validator {account} stake {validator.stake} below minimum {min_stake}"
            )
        validator.active = active
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(VALIDATORS, account, validator, version)
        txn.emit(EventKind.VALIDATOR_UPDATED, {"account": account, "active": active})
        self._ledger.commit(txn)
        return validator

    def stake_validator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> Validator:
        now = current_time(now)
        require_positive(amount, "amount")
        validator, version = self.load_validator(account)
        max_stake = self._resolver.validation().max_stake
        if validator.stake + amount > max_stake:
            raise InvalidArgument(
                f"Stake would exceed maximum {max_stake} for validator {account}"
            )
        validator.stake += amount
        txn = Transaction(actor_id=account, timestamp=now)
        txn.transfer(account, ESCROW_VALIDATORS, amount, memo=f"validator:{account}:stake")
        txn.put(VALIDATORS, account, validator, version)
        txn.emit(EventKind.VALIDATOR_STAKED, {
            "account": account,
            "amount": amount,
            "stake": validator.stake,
        })
        self._ledger.commit(txn)
        return validator

    def unstake_validator(
        self, account: str, amount: int, now: Optional[int] = None,
    ) -> UnstakeRequest:
        """Move stake into a delayed, cancellable unstake request."""
        now = current_time(now)
        validator, version = self.load_validator(account)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InsufficientFunds(f"Unstake amount must be positive, got {amount!r}")
        if amount > validator.stake:
            raise InsufficientFunds(
                f"Unstake {amount} exceeds stake {validator.stake} of validator {account}"
            )
        if validator.pending_challenges > 0:
            raise InvalidTransition(
                f"Validator {account} has {validator.pending_challenges} pending challenges",
                state="challenged",
                command="unstake",
            )
        policy = self._resolver.validation()
        remaining = validator.stake - amount
        if validator.active and 0 < remaining < policy.min_stake:
            raise BelowMinimumStake(
                f"Remaining stake {remaining} would be below minimum {policy.min_stake}; "
                f"unstake everything or keep at least the minimum"
            )

        request = UnstakeRequest(
            request_id=self._ledger.next_id(VALIDATOR_UNSTAKES),
            account=account,
            amount=amount,
            requested_at=now,
            available_at=now + policy.unstake_delay_seconds,
        )
        validator.stake = remaining
        if remaining == 0:
            validator.active = False
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(VALIDATORS, account, validator, version)
        txn.put(VALIDATOR_UNSTAKES, request.request_id, request, 0)
        txn.emit(EventKind.VALIDATOR_UNSTAKE_REQUESTED, {
            "account": account,
            "request_id": request.request_id,
            "amount": amount,
            "available_at": request.available_at,
        })
        self._ledger.commit(txn)
        return request

    def withdraw_unstake(
        self, account: str, request_id: int, now: Optional[int] = None,
    ) -> UnstakeRequest:
        now = current_time(now)
        request, version = self._load_own_unstake(account, request_id)
        if now < request.available_at:
            raise NotYetEligible(
                f"Unstake {request_id} available at {request.available_at}"
            )
        request.status = UnstakeStatus.WITHDRAWN
        request.closed_at = now
        txn = Transaction(actor_id=account, timestamp=now)
        txn.transfer(ESCROW_VALIDATORS, account, request.amount, memo=f"validator:{account}:unstake")
        txn.put(VALIDATOR_UNSTAKES, request_id, request, version)
        txn.emit(EventKind.VALIDATOR_UNSTAKE_WITHDRAWN, {
            "account": account,
            "request_id": request_id,
            "amount": request.amount,
        })
        self._ledger.commit(txn)
        return request

    def cancel_validator_unstake(
        self, account: str, request_id: int, now: Optional[int] = None,
    ) -> Validator:
        now = current_time(now)
        request, request_version = self._load_own_unstake(account, request_id)
        validator, version = self.load_validator(account)
        validator.stake += request.amount
        request.status = UnstakeStatus.CANCELLED
        request.closed_at = now
        txn = Transaction(actor_id=account, timestamp=now)
        txn.put(VALIDATORS, account, validator, version)
        txn.put(VALIDATOR_UNSTAKES, request_id, request, request_version)
        txn.emit(EventKind.VALIDATOR_UNSTAKE_CANCELLED, {
            "account": account,
            "request_id": request_id,
        })
        self._ledger.commit(txn)
        return validator

    # ------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------

    def submit_validation(
        self,
        validator: str,
        agent: str,
        job_hash: str,
        result: Union[ValidationResult, str],
        confidence: int,
        evidence_uri: Optional[str] = None,
        now: Optional[int] = None,
    ) -> Validation:
        """Record a verdict. Requires an active validator at minimum stake."""
        now = current_time(now)
        policy = self._resolver.validation()
        record, version = self.load_validator(validator)
        if not record.active:
            raise Unauthorized(f"Validator {validator} is not active")
        if record.stake < policy.min_stake:
            raise BelowMinimumStake(
                f"Validator {validator} stake {record.stake} below minimum {policy.min_stake}"
            )
        if self._ledger.read(AGENTS, agent) is None:
            raise NotFound(f"Agent not found: {agent}")
        if agent == validator:
            raise InvalidArgument("Validators cannot validate their own work")
        require_text(job_hash, "job_hash", policy.max_job_hash_length)
        try:
            verdict = ValidationResult(result)
        except ValueError as e:
            raise InvalidArgument(f"Unknown validation result: {result!r}") from e
        require_int(confidence, "confidence", minimum=0, maximum=100)
        evidence_uri = optional_text(evidence_uri, "evidence_uri", policy.max_evidence_uri_length)

        validation = Validation(
            validation_id=self._ledger.next_id(VALIDATIONS),
            validator=validator,
            agent=agent,
            job_hash=job_hash,
            result=verdict,
            confidence=confidence,
            evidence_uri=evidence_uri or "",
            timestamp=now,
        )
        record.total_validations += 1
        record.accuracy_bps = compute_accuracy(
            record.total_validations, record.incorrect_validations,
        )
        txn = Transaction(actor_id=validator, timestamp=now)
        txn.put(VALIDATORS, validator, record, version)
        txn.put(VALIDATIONS, validation.validation_id, validation, 0)
        txn.emit(EventKind.VALIDATION_SUBMITTED, {
            "validation_id": validation.validation_id,
            "validator": validator,
            "agent": agent,
            "job_hash": job_hash,
            "result": verdict.value,
            "confidence": confidence,
        })
        self._ledger.commit(txn)
        return validation

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    def challenge_validation(
        self,
        challenger: str,
        validation_id: int,
        reason: str,
        evidence_uri: Optional[str] = None,
        stake_amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Challenge:
        """Open a challenge, optionally funding it in the same submission."""
        now = current_time(now)
        policy = self._resolver.validation()
        challenger = require_account(challenger, "challenger")
        require_text(reason, "reason", self._resolver.escrow().max_reason_length)
        evidence_uri = optional_text(evidence_uri, "evidence_uri", policy.max_evidence_uri_length)

        validation, validation_version = self.load_validation(validation_id)
        if validation.challenged:
            raise DuplicateActive(f"Validation {validation_id} has already been challenged")
        if challenger == validation.validator:
            raise Unauthorized("Validators cannot challenge their own validation")
        if now > validation.timestamp + policy.challenge_window_seconds:
            raise InvalidTransition(
                f"Challenge window for validation {validation_id} has closed",
                state="closed",
                command="challenge",
            )

        challenge = Challenge(
            challenge_id=self._ledger.next_id(CHALLENGES),
            validation_id=validation_id,
            challenger=challenger,
            reason=reason,
            evidence_uri=evidence_uri or "",
            created_at=now,
            funding_deadline=now + policy.challenge_funding_seconds,
        )
        validation.challenged = True

        txn = Transaction(actor_id=challenger, timestamp=now)
        txn.put(VALIDATIONS, validation_id, validation, validation_version)
        txn.emit(EventKind.CHALLENGE_OPENED, {
            "challenge_id": challenge.challenge_id,
            "validation_id": validation_id,
            "challenger": challenger,
        })
        if stake_amount is not None:
            self._stage_challenge_funding(txn, challenge, validation, stake_amount)
        txn.put(CHALLENGES, challenge.challenge_id, challenge, 0)
        self._ledger.commit(txn)
        return challenge

    def fund_challenge(
        self,
        challenger: str,
        challenge_id: int,
        amount: int,
        now: Optional[int] = None,
    ) -> Challenge:
        now = current_time(now)
        challenge, version = self.load_challenge(challenge_id)
        if challenger != challenge.challenger:
            raise Unauthorized(f"Only the challenger can fund challenge {challenge_id}")
        self._require_pending(challenge)
        if challenge.is_funded:
            raise InvalidTransition(
                f"Challenge {challenge_id} is already funded",
                state="funded",
                command="fund",
            )
        if now > challenge.funding_deadline:
            raise InvalidTransition(
                f"Funding deadline of challenge {challenge_id} has passed",
                state="expired",
                command="fund",
            )
        validation, _ = self.load_validation(challenge.validation_id)

        txn = Transaction(actor_id=challenger, timestamp=now)
        self._stage_challenge_funding(txn, challenge, validation, amount)
        txn.put(CHALLENGES, challenge_id, challenge, version)
        self._ledger.commit(txn)
        return challenge

    def cancel_challenge(
        self, challenger: str, challenge_id: int, now: Optional[int] = None,
    ) -> Challenge:
        """Challenger withdraws an unfunded challenge.

        Allowed within the cancel grace period after opening, or once the
        funding deadline has passed.
        """
        now = current_time(now)
        challenge, version = self.load_challenge(challenge_id)
        if challenger != challenge.challenger:
            raise Unauthorized(f"Only the challenger can cancel challenge {challenge_id}")
        self._require_unfunded_pending(challenge, "cancel")
        grace = self._resolver.validation().challenge_cancel_grace_seconds
        if challenge.created_at + grace < now <= challenge.funding_deadline:
            raise NotYetEligible(
                f"Challenge {challenge_id} can be cancelled again after "
                f"{challenge.funding_deadline}"
            )
        return self._close_unfunded(challenge, version, challenger, now)

    def expire_challenge(
        self, caller: str, challenge_id: int, now: Optional[int] = None,
    ) -> Challenge:
        """Anyone may close an unfunded challenge past its funding deadline."""
        now = current_time(now)
        challenge, version = self.load_challenge(challenge_id)
        self._require_unfunded_pending(challenge, "expire")
        if now <= challenge.funding_deadline:
            raise NotYetEligible(
                f"Challenge {challenge_id} funding deadline is {challenge.funding_deadline}"
            )
        return self._close_unfunded(challenge, version, caller, now)

    def resolve_challenge(
        self,
        resolver: str,
        challenge_id: int,
        upheld: bool,
        notes: str,
        now: Optional[int] = None,
    ) -> Challenge:
        now = current_time(now)
        require_bool(upheld, "upheld")
        if resolver != self._resolver.platform().owner:
            raise Unauthorized("Only the platform owner can resolve challenges")
        challenge, version = self.load_challenge(challenge_id)
        self._require_pending(challenge)
        if not challenge.is_funded:
            raise InsufficientFunds(f"Challenge {challenge_id} is not funded")
        require_text(notes, "notes", self._resolver.arbitration().max_notes_length)

        validation, _ = self.load_validation(challenge.validation_id)
        validator, validator_version = self.load_validator(validation.validator)

        txn = Transaction(actor_id=resolver, timestamp=now)
        if upheld:
            slash = apply_bps(validator.stake, self._resolver.validation().slash_bps)
            self._take_stake(validator, slash)
            validator.incorrect_validations += 1
            challenge.status = ChallengeStatus.UPHELD
            challenge.slashed_amount = slash
            txn.transfer(
                ESCROW_VALIDATORS, challenge.challenger, challenge.stake_amount + slash,
                memo=f"challenge:{challenge_id}:upheld",
            )
        else:
            # Forfeited stake stays in validator escrow, now owned by the validator
            validator.stake += challenge.stake_amount
            challenge.status = ChallengeStatus.REJECTED
        validator.pending_challenges = max(0, validator.pending_challenges - 1)
        validator.accuracy_bps = compute_accuracy(
            validator.total_validations, validator.incorrect_validations,
        )
        challenge.resolver = resolver
        challenge.resolution_notes = notes
        challenge.resolved_at = now

        txn.put(CHALLENGES, challenge_id, challenge, version)
        txn.put(VALIDATORS, validator.account, validator, validator_version)
        txn.emit(EventKind.CHALLENGE_RESOLVED, {
            "challenge_id": challenge_id,
            "validation_id": validation.validation_id,
            "validator": validator.account,
            "status": challenge.status.value,
            "slashed_amount": challenge.slashed_amount,
            "accuracy_bps": validator.accuracy_bps,
        })
        self._ledger.commit(txn)
        return challenge

    def slash_validator(
        self,
        caller: str,
        account: str,
        amount: int,
        reason: str,
        now: Optional[int] = None,
    ) -> Validator:
        """Platform owner slashes a validator directly.

        The slashed stake is paid to the platform owner. What remains must
        be 0 or at least the minimum stake.
        """
        now = current_time(now)
        owner = self._resolver.platform().owner
        if caller != owner:
            raise Unauthorized("Only the platform owner can slash validators")
        require_positive(amount, "amount")
        require_text(reason, "reason", self._resolver.escrow().max_reason_length)
        validator, version = self.load_validator(account)
        if amount > validator.stake:
            raise InsufficientFunds(
                f"Slash {amount} exceeds stake {validator.stake} of validator {account}"
            )
        min_stake = self._resolver.validation().min_stake
        remaining = validator.stake - amount
        if 0 < remaining < min_stake:
            raise BelowMinimumStake(
                f"Slashing {amount} would leave {remaining}, below minimum {min_stake}; "
                f"slash to 0 or leave at least the minimum"
            )

        self._take_stake(validator, amount)
        txn = Transaction(actor_id=caller, timestamp=now)
        txn.transfer(ESCROW_VALIDATORS, owner, amount, memo=f"validator:{account}:slash")
        txn.put(VALIDATORS, account, validator, version)
        txn.emit(EventKind.VALIDATOR_SLASHED, {
            "account": account,
            "amount": amount,
            "stake": validator.stake,
            "active": validator.active,
            "reason": reason,
        })
        self._ledger.commit(txn)
        return validator

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_validator(self, account: str) -> Validator:
        return self.load_validator(account)[0]

    def list_validators(
        self,
        active_only: bool = False,
        specialization: Optional[str] = None,
        min_accuracy_bps: int = 0,
    ) -> list[Validator]:
        validators = [from_record(Validator, e.value) for e in self._ledger.scan(VALIDATORS)]
        if active_only:
            min_stake = self._resolver.validation().min_stake
            validators = [v for v in validators if v.active and v.stake >= min_stake]
        if specialization is not None:
            validators = [v for v in validators if specialization in v.specializations]
        return [v for v in validators if v.accuracy_bps >= min_accuracy_bps]

    def get_validation(self, validation_id: int) -> Validation:
        return self.load_validation(validation_id)[0]

    def list_validations(
        self,
        agent: Optional[str] = None,
        validator: Optional[str] = None,
        job_hash: Optional[str] = None,
    ) -> list[Validation]:
        validations = [from_record(Validation, e.value) for e in self._ledger.scan(VALIDATIONS)]
        if agent is not None:
            validations = [v for v in validations if v.agent == agent]
        if validator is not None:
            validations = [v for v in validations if v.validator == validator]
        if job_hash is not None:
            validations = [v for v in validations if v.job_hash == job_hash]
        return validations

    def get_challenge(self, challenge_id: int) -> Challenge:
        return self.load_challenge(challenge_id)[0]

    def list_challenges(self, validation_id: Optional[int] = None) -> list[Challenge]:
        challenges = [from_record(Challenge, e.value) for e in self._ledger.scan(CHALLENGES)]
        if validation_id is not None:
            challenges = [c for c in challenges if c.validation_id == validation_id]
        return challenges

    def list_unstake_requests(self, account: str) -> list[UnstakeRequest]:
        return [
            from_record(UnstakeRequest, e.value)
            for e in self._ledger.scan(VALIDATOR_UNSTAKES)
            if e.value["account"] == account
        ]

    def load_validator(self, account: str) -> tuple[Validator, int]:
        entry = self._ledger.read(VALIDATORS, account)
        if entry is None:
            raise NotFound(f"Validator not found: {account}")
        return from_record(Validator, entry.value), entry.version

    def load_validation(self, validation_id: int) -> tuple[Validation, int]:
        entry = self._ledger.read(VALIDATIONS, validation_id)
        if entry is None:
            raise NotFound(f"Validation not found: {validation_id}")
        return from_record(Validation, entry.value), entry.version

    def load_challenge(self, challenge_id: int) -> tuple[Challenge, int]:
        entry = self._ledger.read(CHALLENGES, challenge_id)
        if entry is None:
            raise NotFound(f"Challenge not found: {challenge_id}")
        return from_record(Challenge, entry.value), entry.version

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_profile(self, method: str, specializations: Iterable[str]) -> list[str]:
        policy = self._resolver.validation()
        require_text(method, "method", policy.max_method_length)
        specs: list[str] = []
        for spec in specializations:
            if not isinstance(spec, str) or not spec.strip():
                raise InvalidArgument("Specializations must be non-empty strings")
            if spec.strip() not in specs:
                specs.append(spec.strip())
        if len(specs) > policy.max_specializations:
            raise InvalidArgument(
                f"At most {policy.max_specializations} specializations allowed"
            )
        return specs

    def _take_stake(self, validator: Validator, amount: int) -> None:
        """Reduce stake; switch off a validator left below the minimum."""
        validator.stake -= amount
        if validator.stake < self._resolver.validation().min_stake:
            validator.active = False

    def _stage_challenge_funding(
        self,
        txn: Transaction,
        challenge: Challenge,
        validation: Validation,
        amount: int,
    ) -> None:
        """Transfer exactly the configured challenge stake and pin the validator."""
        required = self._resolver.validation().challenge_stake
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < required:
            raise InsufficientFunds(
                f"Challenge stake must be at least {required}, got {amount!r}"
            )
        validator, version = self.load_validator(validation.validator)
        validator.pending_challenges += 1
        challenge.stake_amount = required
        txn.transfer(
            challenge.challenger, ESCROW_VALIDATORS, required,
            memo=f"challenge:{challenge.challenge_id}:stake",
        )
        txn.put(VALIDATORS, validator.account, validator, version)
        txn.emit(EventKind.CHALLENGE_FUNDED, {
            "challenge_id": challenge.challenge_id,
            "amount": required,
        })

    def _close_unfunded(
        self, challenge: Challenge, version: int, caller: str, now: int,
    ) -> Challenge:
        challenge.status = ChallengeStatus.CANCELLED
        challenge.resolved_at = now
        txn = Transaction(actor_id=caller, timestamp=now)
        txn.put(CHALLENGES, challenge.challenge_id, challenge, version)
        txn.emit(EventKind.CHALLENGE_CANCELLED, {
            "challenge_id": challenge.challenge_id,
            "validation_id": challenge.validation_id,
        })
        self._ledger.commit(txn)
        return challenge

    def _require_pending(self, challenge: Challenge) -> None:
        if not challenge.is_pending:
            raise AlreadyResolved(
                f"Challenge {challenge.challenge_id} already {challenge.status.value}"
            )

    def _require_unfunded_pending(self, challenge: Challenge, command: str) -> None:
        self._require_pending(challenge)
        if challenge.is_funded:
            raise InvalidTransition(
                f"Funded challenge {challenge.challenge_id} must be resolved, not {command}ed",
                state="funded",
                command=command,
            )

    def _load_own_unstake(self, account: str, request_id: int) -> tuple[UnstakeRequest, int]:
        entry = self._ledger.read(VALIDATOR_UNSTAKES, request_id)
        if entry is None:
            raise NotFound(f"Unstake request not found: {request_id}")
        request = from_record(UnstakeRequest, entry.value)
        if request.account != account:
            raise Unauthorized(f"Unstake request {request_id} belongs to {request.account}")
        if not request.is_pending:
            raise AlreadyResolved(
                f"Unstake request {request_id} already {request.status.value}"
            )
        return request, entry.version
