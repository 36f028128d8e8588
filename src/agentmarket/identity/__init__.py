"""Identity and stake oracle port."""

from agentmarket.identity.oracle import IdentityOracle, StaticIdentityOracle

__all__ = ["IdentityOracle", "StaticIdentityOracle"]
