#!/usr/bin/env python3
"""Jobledger invariant checks against the shipped config and stored state."""

import sys
from pathlib import Path

from jobledger import invariants
from jobledger.persistence.store import STATE_FILENAME, DocumentStore
from jobledger.policy.resolver import PolicyResolver


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
STATE_PATH = ROOT / "data" / STATE_FILENAME


def check(config_dir: Path = CONFIG_DIR, state_path: Path = STATE_PATH) -> int:
    errors: list[str] = []
    try:
        resolver = PolicyResolver.from_config_dir(config_dir)
    except (OSError, ValueError) as e:
        errors.append(str(e))
    else:
        errors.extend(invariants.check_config(resolver))

    if state_path.exists():
        errors.extend(invariants.check_store(DocumentStore(storage_path=state_path)))

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
