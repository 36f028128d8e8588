"""Trust score aggregation."""

from agentmarket.trust.engine import TrustScoreAggregator, compute_trust_score

__all__ = ["TrustScoreAggregator", "compute_trust_score"]
