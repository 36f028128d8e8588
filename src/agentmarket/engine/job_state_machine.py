"""Job state machine — enforces valid lifecycle transitions.

Job lifecycle:
    CREATED → FUNDED → ACCEPTED → INPROGRESS → DELIVERED → COMPLETED
    CREATED/FUNDED → REFUNDED                      (client cancels)
    ACCEPTED/INPROGRESS → DELIVERED                (agent delivers)
    ACCEPTED/INPROGRESS/DELIVERED → DISPUTED → ARBITRATED
    FUNDED/ACCEPTED/INPROGRESS → REFUNDED          (timeouts)
    DELIVERED → COMPLETED                          (deadline claim by agent)

Every command is legal only from a fixed set of source states, and every
state change must be an edge of the transition table. There are no
implicit transitions and no skipped states: CREATED → DELIVERED is
impossible whatever the command.

Pure computation: validates transitions only. Ledger writes, fund
movements and audit events are handled by the job engine.
"""

from __future__ import annotations

import enum

from agentmarket.errors import InvalidTransition
from agentmarket.models.job import Job, JobState


class JobCommand(str, enum.Enum):
    """Commands that act on a job, as named in error messages."""
    SUBMIT_BID = "bid on"
    SELECT_BID = "select a bid on"
    WITHDRAW_BID = "withdraw a bid on"
    FUND = "fund"
    ACCEPT = "accept"
    START = "start"
    DELIVER = "deliver"
    APPROVE = "approve"
    CANCEL = "cancel"
    DISPUTE = "dispute"
    RESOLVE = "resolve a dispute on"
    CLAIM_TIMEOUT = "claim timeout on"
    CLAIM_ACCEPTANCE_TIMEOUT = "claim acceptance timeout on"


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.CREATED: {JobState.FUNDED, JobState.REFUNDED},
    JobState.FUNDED: {JobState.ACCEPTED, JobState.REFUNDED},
    JobState.ACCEPTED: {
        JobState.INPROGRESS,
        JobState.DELIVERED,
        JobState.DISPUTED,
        JobState.REFUNDED,
    },
    JobState.INPROGRESS: {
        JobState.DELIVERED,
        JobState.DISPUTED,
        JobState.REFUNDED,
    },
    JobState.DELIVERED: {JobState.COMPLETED, JobState.DISPUTED},
    JobState.DISPUTED: {JobState.ARBITRATED},
    # Terminal states: no outgoing transitions
    JobState.COMPLETED: set(),
    JobState.REFUNDED: set(),
    JobState.ARBITRATED: set(),
}

# States from which each command may be issued
_COMMAND_SOURCES: dict[JobCommand, frozenset[JobState]] = {
    JobCommand.SUBMIT_BID: frozenset({JobState.CREATED}),
    JobCommand.SELECT_BID: frozenset({JobState.CREATED}),
    JobCommand.WITHDRAW_BID: frozenset({JobState.CREATED}),
    JobCommand.FUND: frozenset({JobState.CREATED, JobState.FUNDED}),
    JobCommand.ACCEPT: frozenset({JobState.FUNDED}),
    JobCommand.START: frozenset({JobState.ACCEPTED}),
    JobCommand.DELIVER: frozenset({JobState.ACCEPTED, JobState.INPROGRESS}),
    JobCommand.APPROVE: frozenset({JobState.DELIVERED}),
    JobCommand.CANCEL: frozenset({JobState.CREATED, JobState.FUNDED}),
    JobCommand.DISPUTE: frozenset({
        JobState.ACCEPTED,
        JobState.INPROGRESS,
        JobState.DELIVERED,
    }),
    JobCommand.RESOLVE: frozenset({JobState.DISPUTED}),
    JobCommand.CLAIM_TIMEOUT: frozenset({
        JobState.FUNDED,
        JobState.ACCEPTED,
        JobState.INPROGRESS,
        JobState.DELIVERED,
    }),
    JobCommand.CLAIM_ACCEPTANCE_TIMEOUT: frozenset({JobState.FUNDED}),
}


class JobStateMachine:
    """Validates job commands and state transitions."""

    @staticmethod
    def require(job: Job, command: JobCommand) -> None:
        """Raise InvalidTransition unless ``command`` is legal in job's state."""
        if job.state not in _COMMAND_SOURCES[command]:
            raise InvalidTransition.for_job(job.job_id, job.state.value, command.value)

    @staticmethod
    def is_legal(state: JobState, command: JobCommand) -> bool:
        return state in _COMMAND_SOURCES[command]

    @staticmethod
    def apply_transition(job: Job, target: JobState, command: JobCommand) -> None:
        """Validate and apply a transition on a working copy of the job.

        The caller stages the mutated job in a ledger transaction; nothing
        is visible until that transaction commits.
        """
        JobStateMachine.require(job, command)
        if target not in _TRANSITIONS.get(job.state, set()):
            raise InvalidTransition.for_job(
                job.job_id,
                job.state.value,
                command.value,
                detail=f"{job.state.value} → {target.value} is not a legal transition",
            )
        job.state = target

    @staticmethod
    def is_terminal(state: JobState) -> bool:
        return not _TRANSITIONS.get(state)

    @staticmethod
    def valid_transitions(state: JobState) -> set[JobState]:
        """Return the set of valid target states from the given state."""
        return set(_TRANSITIONS.get(state, set()))

    @staticmethod
    def is_valid_path(states: list[JobState]) -> bool:
        """True if consecutive states are all edges of the transition graph."""
        return all(
            b in _TRANSITIONS.get(a, set())
            for a, b in zip(states, states[1:])
        )
