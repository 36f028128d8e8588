"""Marketplace policy — parameter loading and validation."""

from agentmarket.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
