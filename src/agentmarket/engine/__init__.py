"""Job lifecycle rules — transition table and command guards."""

from agentmarket.engine.job_state_machine import JobCommand, JobStateMachine

__all__ = ["JobCommand", "JobStateMachine"]
