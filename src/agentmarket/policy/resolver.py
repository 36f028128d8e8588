"""Policy resolver — loads marketplace parameters and exposes typed views.

All tunable numbers (fees, stakes, windows, length limits, trust caps)
live in ``config/market_params.json``. Engines never hard-code them; they
ask the resolver. Missing keys fall back to the defaults below, unknown
keys and out-of-range values are rejected at load time (fail closed).
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from agentmarket.models.money import BPS_DENOMINATOR

PARAMS_FILENAME = "market_params.json"

_DAY = 86_400

DEFAULT_PARAMS: dict[str, dict[str, Any]] = {
    "platform": {
        "owner": "platform",
        "default_arbitrator": None,
        "platform_fee_bps": 100,
    },
    "escrow": {
        "min_job_amount": 10_000,
        "max_title_length": 128,
        "max_description_length": 2048,
        "max_deliverables": 32,
        "max_deliverable_length": 512,
        "max_evidence_uri_length": 2048,
        "max_reason_length": 512,
        "max_proposal_length": 2048,
        "dispute_window_seconds": 3 * _DAY,
        "acceptance_timeout_seconds": 7 * _DAY,
        "min_trust_to_bid": 0,
        "max_active_bids_per_job": 50,
    },
    "arbitration": {
        "max_fee_bps": 500,
        "min_stake": 10_000_000,
        "unstake_delay_seconds": 7 * _DAY,
        "dispute_timeout_seconds": 14 * _DAY,
        "max_notes_length": 1024,
    },
    "validation": {
        "min_stake": 50_000_000,
        "max_stake": 100_000_000_000,
        "challenge_stake": 10_000_000,
        "challenge_window_seconds": 3 * _DAY,
        "challenge_funding_seconds": _DAY,
        "challenge_cancel_grace_seconds": 3600,
        "unstake_delay_seconds": 7 * _DAY,
        "slash_bps": 1000,
        "max_specializations": 16,
        "max_method_length": 256,
        "max_job_hash_length": 128,
        "max_evidence_uri_length": 256,
    },
    "trust": {
        "kyc_points_per_level": 10,
        "kyc_max": 30,
        "max_kyc_level": 3,
        "stake_cap": 100_000_000,
        "stake_max": 20,
        "reputation_max": 40,
        "longevity_max": 10,
        "month_seconds": 30 * _DAY,
        "max_feedback_score": 5,
        "feedback_dispute_window_seconds": _DAY,
    },
}


@dataclass(frozen=True)
class PlatformPolicy:
    owner: str
    default_arbitrator: Optional[str]
    platform_fee_bps: int


@dataclass(frozen=True)
class EscrowPolicy:
    min_job_amount: int
    max_title_length: int
    max_description_length: int
    max_deliverables: int
    max_deliverable_length: int
    max_evidence_uri_length: int
    max_reason_length: int
    max_proposal_length: int
    dispute_window_seconds: int
    acceptance_timeout_seconds: int
    min_trust_to_bid: int
    max_active_bids_per_job: int


@dataclass(frozen=True)
class ArbitrationPolicy:
    max_fee_bps: int
    min_stake: int
    unstake_delay_seconds: int
    dispute_timeout_seconds: int
    max_notes_length: int


@dataclass(frozen=True)
class ValidationPolicy:
    min_stake: int
    max_stake: int
    challenge_stake: int
    challenge_window_seconds: int
    challenge_funding_seconds: int
    challenge_cancel_grace_seconds: int
    unstake_delay_seconds: int
    slash_bps: int
    max_specializations: int
    max_method_length: int
    max_job_hash_length: int
    max_evidence_uri_length: int


@dataclass(frozen=True)
class TrustPolicy:
    kyc_points_per_level: int
    kyc_max: int
    max_kyc_level: int
    stake_cap: int
    stake_max: int
    reputation_max: int
    longevity_max: int
    month_seconds: int
    max_feedback_score: int
    feedback_dispute_window_seconds: int


def validate_params(params: dict[str, Any]) -> list[str]:
    """Check a merged parameter tree. Returns errors (empty = OK)."""
    errors: list[str] = []

    for section in params:
        if section not in DEFAULT_PARAMS:
            errors.append(f"Unknown config section: {section}")
    for section, defaults in DEFAULT_PARAMS.items():
        values = params.get(section)
        if not isinstance(values, dict):
            errors.append(f"Missing config section: {section}")
            continue
        for key in values:
            if key not in defaults:
                errors.append(f"Unknown config key: {section}.{key}")
        for key, value in values.items():
            if key in ("owner", "default_arbitrator"):
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{section}.{key} must be an integer, got {value!r}")
            elif value < 0:
                errors.append(f"{section}.{key} must be >= 0, got {value}")
    if errors:
        return errors

    platform = params["platform"]
    if not isinstance(platform["owner"], str) or not platform["owner"].strip():
        errors.append("platform.owner must be a non-empty string")
    default_arb = platform["default_arbitrator"]
    if default_arb is not None and (not isinstance(default_arb, str) or not default_arb.strip()):
        errors.append("platform.default_arbitrator must be null or a non-empty string")
    if platform["platform_fee_bps"] > 1000:
        errors.append(
            f"platform.platform_fee_bps must be <= 1000, got {platform['platform_fee_bps']}"
        )

    escrow = params["escrow"]
    window = escrow["dispute_window_seconds"]
    if not _DAY <= window <= 30 * _DAY:
        errors.append(
            f"escrow.dispute_window_seconds must be between 1 and 30 days, got {window}"
        )
    if escrow["min_job_amount"] <= 0:
        errors.append("escrow.min_job_amount must be > 0")
    if escrow["max_active_bids_per_job"] <= 0:
        errors.append("escrow.max_active_bids_per_job must be > 0")
    if escrow["min_trust_to_bid"] > 100:
        errors.append("escrow.min_trust_to_bid must be <= 100")

    arbitration = params["arbitration"]
    if arbitration["max_fee_bps"] > BPS_DENOMINATOR:
        errors.append("arbitration.max_fee_bps must be <= 10000")
    if arbitration["dispute_timeout_seconds"] <= 0:
        errors.append("arbitration.dispute_timeout_seconds must be > 0")

    validation = params["validation"]
    if validation["min_stake"] <= 0:
        errors.append("validation.min_stake must be > 0")
    if validation["max_stake"] < validation["min_stake"]:
        errors.append("validation.max_stake must be >= validation.min_stake")
    if validation["challenge_stake"] <= 0:
        errors.append("validation.challenge_stake must be > 0")
    if validation["slash_bps"] > BPS_DENOMINATOR:
        errors.append("validation.slash_bps must be <= 10000")

    trust = params["trust"]
    caps = (
        min(trust["kyc_max"], trust["kyc_points_per_level"] * trust["max_kyc_level"])
        + trust["stake_max"]
        + trust["reputation_max"]
        + trust["longevity_max"]
    )
    if caps > 100:
        errors.append(f"trust component caps must sum to <= 100, got {caps}")
    if trust["stake_cap"] <= 0:
        errors.append("trust.stake_cap must be > 0")
    if trust["month_seconds"] <= 0:
        errors.append("trust.month_seconds must be > 0")
    if trust["max_feedback_score"] <= 0:
        errors.append("trust.max_feedback_score must be > 0")
    if trust["feedback_dispute_window_seconds"] <= 0:
        errors.append("trust.feedback_dispute_window_seconds must be > 0")

    return errors


def merge_params(overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Overlay ``overrides`` onto the defaults, one section at a time."""
    merged = copy.deepcopy(DEFAULT_PARAMS)
    for section, values in (overrides or {}).items():
        if not isinstance(values, dict):
            raise ValueError(f"Config section {section} must be an object")
        merged.setdefault(section, {}).update(values)
    return merged


class PolicyResolver:
    """Typed access to marketplace parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        resolver.arbitration().max_fee_bps
    """

    def __init__(self, params: dict[str, Any]) -> None:
        errors = validate_params(params)
        if errors:
            raise ValueError("Invalid market parameters: " + "; ".join(errors))
        self._params = copy.deepcopy(params)
        self._platform = PlatformPolicy(**params["platform"])
        self._escrow = EscrowPolicy(**params["escrow"])
        self._arbitration = ArbitrationPolicy(**params["arbitration"])
        self._validation = ValidationPolicy(**params["validation"])
        self._trust = TrustPolicy(**params["trust"])

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load ``market_params.json`` from a config directory."""
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: top level must be a JSON object")
        return cls(merge_params(raw))

    @classmethod
    def from_params(cls, overrides: Optional[dict[str, Any]] = None) -> PolicyResolver:
        """Build from defaults plus optional per-section overrides."""
        return cls(merge_params(overrides))

    def params(self) -> dict[str, Any]:
        return copy.deepcopy(self._params)

    def platform(self) -> PlatformPolicy:
        return self._platform

    def escrow(self) -> EscrowPolicy:
        return self._escrow

    def arbitration(self) -> ArbitrationPolicy:
        return self._arbitration

    def validation(self) -> ValidationPolicy:
        return self._validation

    def trust(self) -> TrustPolicy:
        return self._trust
