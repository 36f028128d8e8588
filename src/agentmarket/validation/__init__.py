"""Validator staking, validations, and challenges."""

from agentmarket.validation.engine import ValidationEngine

__all__ = ["ValidationEngine"]
