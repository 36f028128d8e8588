#!/usr/bin/env python3
"""Marketplace parameter checks against config/market_params.json."""

import json
import sys
from pathlib import Path

from agentmarket.invariants import check_config
from agentmarket.policy.resolver import PARAMS_FILENAME, merge_params


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / PARAMS_FILENAME


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check() -> int:
    errors = check_config(merge_params(load_json(PARAMS_PATH)))
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
