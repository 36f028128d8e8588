"""Identity/stake oracle — external source of KYC tier and system stake.

The marketplace never verifies identity itself. It asks an oracle for an
account's verification tier (0-3) and any non-slashable system-level
stake, both used only by trust scoring.
"""

from __future__ import annotations

from typing import Optional, Protocol


class IdentityOracle(Protocol):
    def kyc_level(self, account: str) -> int:
        ...

    def system_stake(self, account: str) -> int:
        ...


class StaticIdentityOracle:
    """Dictionary-backed oracle for tests, the CLI, and embedding.

    Unknown accounts report tier 0 and no stake.
    """

    def __init__(
        self,
        kyc_levels: Optional[dict[str, int]] = None,
        stakes: Optional[dict[str, int]] = None,
    ) -> None:
        self._kyc_levels: dict[str, int] = {}
        self._stakes: dict[str, int] = {}
        for account, level in (kyc_levels or {}).items():
            self.set_kyc_level(account, level)
        for account, amount in (stakes or {}).items():
            self.set_system_stake(account, amount)

    def kyc_level(self, account: str) -> int:
        return self._kyc_levels.get(account, 0)

    def system_stake(self, account: str) -> int:
        return self._stakes.get(account, 0)

    def set_kyc_level(self, account: str, level: int) -> None:
        if level < 0:
            raise ValueError(f"KYC level must be >= 0, got {level}")
        self._kyc_levels[account] = level

    def set_system_stake(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"System stake must be >= 0, got {amount}")
        self._stakes[account] = amount
