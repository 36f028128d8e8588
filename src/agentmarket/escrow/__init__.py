"""Job escrow and bidding."""

from agentmarket.escrow.jobs import JobEngine

__all__ = ["JobEngine"]
