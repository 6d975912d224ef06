from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from opsgate.approval.gate import ApprovalGate
from opsgate.audit.log import AuditLog
from opsgate.config import ExecutionSettings
from opsgate.execution.executor import StepExecutor
from opsgate.execution.runner import CommandResult
from opsgate.service import PlanService
from opsgate.store.memory import InMemoryPlanStore

FIXED_NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class ScriptedRunner:
    """CommandRunner double: succeeds unless a command has a scripted result."""

    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[tuple[str, float]] = []

    async def run(self, command: str, timeout_seconds: float) -> CommandResult:
        self.calls.append((command, timeout_seconds))
        result = self.results.get(command)
        if result is None:
            return CommandResult(success=True, output=f"ran {command}", exit_code=0)
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


def failure(message: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(success=False, error=message, exit_code=exit_code)


def make_params(**overrides: Any) -> dict[str, Any]:
    params: dict[str, Any] = {
        "title": "Restart crashlooping payments pods",
        "riskLevel": "HIGH",
        "issue": "payments-api pods are in CrashLoopBackOff",
        "rootCause": "Bad config map rollout",
        "estimatedDuration": "5m",
        "affectedResources": [
            {"type": "deployment", "name": "payments-api", "namespace": "prod"},
        ],
        "steps": [
            {
                "action": "scale",
                "description": "Scale payments-api down",
                "command": "kubectl scale deploy/payments-api --replicas=0",
                "riskLevel": "MEDIUM",
                "timeout": "30s",
            },
            {
                "action": "restore",
                "description": "Restore previous config map",
                "command": "kubectl apply -f payments-config.yaml",
            },
            {
                "action": "verify",
                "description": "Check dashboards manually",
            },
        ],
        "rollback": {
            "method": "redeploy",
            "commands": ["kubectl rollout undo deploy/payments-api"],
            "estimatedTime": "2m",
        },
        "validation": {
            "preFlight": ["Cluster reachable"],
            "postExecution": ["Pods ready"],
        },
    }
    params.update(overrides)
    return params


@pytest.fixture
def store() -> InMemoryPlanStore:
    return InMemoryPlanStore(clock=fixed_clock)


@pytest.fixture
def audit(tmp_path: Path) -> AuditLog:
    return AuditLog(str(tmp_path / "audit" / "audit-log.jsonl"), clock=fixed_clock)


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def gate(store: InMemoryPlanStore, audit: AuditLog) -> ApprovalGate:
    return ApprovalGate(store, audit=audit, clock=fixed_clock)


@pytest.fixture
def executor(store: InMemoryPlanStore, audit: AuditLog, runner: ScriptedRunner) -> StepExecutor:
    settings = ExecutionSettings(default_timeout_seconds=120)
    return StepExecutor(store, audit, settings=settings, runner=runner, clock=fixed_clock)


@pytest.fixture
def service(
    store: InMemoryPlanStore,
    gate: ApprovalGate,
    executor: StepExecutor,
    audit: AuditLog,
) -> PlanService:
    return PlanService(store, gate, executor, audit)
