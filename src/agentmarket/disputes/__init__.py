"""Dispute resolution and the arbitrator registry."""

from agentmarket.disputes.arbitration import ArbitrationEngine

__all__ = ["ArbitrationEngine"]
