"""Policy loader for approval policy YAML files."""

from __future__ import annotations

from pathlib import Path

import yaml

from opsgate.policy.models import PolicyConfig


def load_policy(path: str | None) -> PolicyConfig:
    """Load the approval policy; ``None`` yields the built-in defaults."""
    if path is None:
        return PolicyConfig()
    policy_path = Path(path)
    if not policy_path.exists():
        raise FileNotFoundError(f"Policy file not found: {policy_path}")
    with policy_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return PolicyConfig.from_yaml(data)
