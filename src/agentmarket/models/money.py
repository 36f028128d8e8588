"""Fixed-point helpers for amounts and rates.

All amounts are integers in minor currency units. All rates are held
internally in basis points (10000 bps = 100%). Percentages (0-100) only
exist at the command boundary and are converted with percent_to_bps().
"""

from __future__ import annotations

BPS_DENOMINATOR = 10_000
MAX_PERCENT = 100


def percent_to_bps(percent: int) -> int:
    """Convert an integer percentage in [0, 100] to basis points."""
    if isinstance(percent, bool) or not isinstance(percent, int):
        raise ValueError(f"Percentage must be an integer, got {percent!r}")
    if not 0 <= percent <= MAX_PERCENT:
        raise ValueError(f"Percentage must be in [0, 100], got {percent}")
    return percent * (BPS_DENOMINATOR // MAX_PERCENT)


def apply_bps(amount: int, bps: int) -> int:
    """Floor of amount * bps / 10000."""
    return (amount * bps) // BPS_DENOMINATOR


def split_by_bps(amount: int, client_bps: int) -> tuple[int, int]:
    """Split an amount into (client_share, agent_share).

    The client share is floored; the remainder goes to the agent, so the
    two shares always sum to ``amount``.
    """
    client_share = apply_bps(amount, client_bps)
    return client_share, amount - client_share
