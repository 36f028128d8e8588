"""Typed failures for every marketplace command.

Engines raise these; the service layer catches them at the command
boundary and turns them into a failed ServiceResult carrying the
message and the error code. Each subclass maps to exactly one failure
kind, and ``code`` is stable so callers can branch on it.

All errors derive from ValueError so that code written against plain
rule violations (``except ValueError``) keeps working.
"""

from __future__ import annotations


class MarketError(ValueError):
    """Base class for all rule violations raised by the core."""

    @property
    def code(self) -> str:
        return type(self).__name__


class InvalidTransition(MarketError):
    """Command is not legal for the entity's current state."""

    def __init__(self, message: str, state: str = "", command: str = "") -> None:
        super().__init__(message)
        self.state = state
        self.command = command

    @classmethod
    def for_job(
        cls, job_id: int, state: str, command: str, detail: str = "",
    ) -> InvalidTransition:
        message = f"Cannot {command} job {job_id} in state {state}"
        if detail:
            message += f" ({detail})"
        return cls(message, state=state, command=command)


class Unauthorized(MarketError):
    """Caller does not hold the role the command requires."""


class InsufficientFunds(MarketError):
    """Amount would not reach, or would exceed, the required total."""


class AlreadyResolved(MarketError):
    """Dispute or challenge already has a terminal resolution."""


class BelowMinimumStake(MarketError):
    """Actor's stake is below the configured minimum."""


class NotYetEligible(MarketError):
    """A time window has not elapsed yet."""


class DuplicateActive(MarketError):
    """A second active bid, dispute or challenge on the same target."""


class NotFound(MarketError):
    """Referenced entity does not exist."""


class InvalidArgument(MarketError):
    """Malformed input: empty fields, lengths or numeric ranges."""


class LedgerConflict(MarketError):
    """An entity touched by the submission changed since it was read."""


class LedgerUnavailable(MarketError):
    """Audit trail could not be written; the submission was not applied."""
