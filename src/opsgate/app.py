"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from opsgate.approval.gate import ApprovalGate
from opsgate.audit.log import AuditLog
from opsgate.config import Settings, load_settings
from opsgate.execution.executor import StepExecutor
from opsgate.execution.runner import CommandRunner
from opsgate.logging_utils import configure_logging
from opsgate.policy.loader import load_policy
from opsgate.policy.models import PolicyConfig
from opsgate.service import PlanService
from opsgate.store.files import FilePlanStore


@dataclass
class AppContext:
    """Application-wide dependency container.

    Every component shares the same store and audit log so per-plan locks
    and audit ordering hold across the whole process.
    """

    settings: Settings
    policy: PolicyConfig
    store: FilePlanStore
    audit: AuditLog
    gate: ApprovalGate
    executor: StepExecutor
    service: PlanService


def create_app_context(settings: Settings, runner: CommandRunner | None = None) -> AppContext:
    configure_logging(settings.logging)
    policy = load_policy(settings.policy.path)

    store = FilePlanStore(settings.storage.plans_path)
    audit = AuditLog(settings.storage.audit_log_path)
    gate = ApprovalGate(store, policy=policy.approval, keywords=policy.keywords, audit=audit)
    executor = StepExecutor(store, audit, settings=settings.execution, runner=runner)
    service = PlanService(store, gate, executor, audit)

    return AppContext(
        settings=settings,
        policy=policy,
        store=store,
        audit=audit,
        gate=gate,
        executor=executor,
        service=service,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    return create_app_context(load_settings())
