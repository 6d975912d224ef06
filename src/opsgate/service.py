"""Plan lifecycle facade: submit, review, decide, execute."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from opsgate.approval.gate import ApprovalGate
from opsgate.audit.log import AuditLog
from opsgate.audit.models import AuditLogEntry, AuditStatus
from opsgate.domain.plans import CreatePlanParams, ExecutionPlan, PlanExecutionResult, RiskLevel
from opsgate.errors import PlanNotFoundError
from opsgate.execution.executor import StepExecutor
from opsgate.policy.intents import ApprovalAction
from opsgate.store.base import PlanStore

logger = logging.getLogger(__name__)

DELETE_REASON = "Deleted by user"


@dataclass(frozen=True)
class ReplyOutcome:
    """What ``handle_reply`` did with a free-text response."""

    action: ApprovalAction
    message: str
    plan: ExecutionPlan | None = None


class PlanService:
    def __init__(
        self,
        store: PlanStore,
        gate: ApprovalGate,
        executor: StepExecutor,
        audit: AuditLog,
    ) -> None:
        self._store = store
        self._gate = gate
        self._executor = executor
        self._audit = audit

    @property
    def store(self) -> PlanStore:
        return self._store

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    @property
    def audit(self) -> AuditLog:
        return self._audit

    def submit(self, params: CreatePlanParams | Mapping[str, Any]) -> ExecutionPlan:
        plan = self._store.create(params)
        self._store.save(plan)
        self._audit.log_action(
            AuditLogEntry(
                plan_id=plan.id,
                action="plan_created",
                risk_level=plan.risk_level,
                status=AuditStatus.PENDING,
                notes=plan.title,
            )
        )
        return plan

    def get(self, plan_id: str) -> ExecutionPlan:
        plan = self._store.load(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def pending(self) -> list[ExecutionPlan]:
        return self._store.list_pending()

    def review(self, plan_id: str) -> str:
        return self._gate.format_plan(self.get(plan_id))

    def approve(
        self,
        plan_id: str,
        approver: str,
        comment: str | None = None,
        override: bool = False,
    ) -> ExecutionPlan:
        """Approve a plan. ``override`` only takes effect for CRITICAL plans."""
        plan = self.get(plan_id)
        if override and plan.risk_level == RiskLevel.CRITICAL:
            return self._gate.approve_with_override(plan, approver, comment)
        return self._gate.approve(plan, approver, comment)

    def reject(self, plan_id: str, approver: str, reason: str | None = None) -> ExecutionPlan:
        return self._gate.reject(self.get(plan_id), approver, reason)

    def delete(self, plan_id: str) -> ExecutionPlan:
        return self.reject(plan_id, "system", DELETE_REASON)

    async def execute(self, plan_id: str) -> PlanExecutionResult:
        return await self._executor.execute(self.get(plan_id))

    def handle_reply(self, plan_id: str, text: str, responder: str) -> ReplyOutcome:
        """Apply a free-text reply from ``responder`` to a pending plan.

        Approve and reject replies change the plan's state and may raise the
        same errors as ``approve``/``reject``. Explain, modify and unrecognised
        replies leave the plan untouched.
        """
        plan = self.get(plan_id)
        intent = self._gate.parse_response(text)
        logger.debug(
            "Reply from %s on plan %s parsed as %s", responder, plan_id, intent.action.value
        )

        if intent.action == ApprovalAction.APPROVE:
            plan = self._gate.approve(plan, responder, intent.comment)
            return ReplyOutcome(intent.action, f"Plan {plan.id} approved by {responder}", plan)

        if intent.action == ApprovalAction.REJECT:
            plan = self._gate.reject(plan, responder, intent.comment)
            return ReplyOutcome(intent.action, f"Plan {plan.id} rejected by {responder}", plan)

        if intent.action == ApprovalAction.EXPLAIN:
            return ReplyOutcome(intent.action, self._gate.explain_step(plan, intent.query), plan)

        if intent.action == ApprovalAction.MODIFY:
            requested = intent.comment or "no details given"
            return ReplyOutcome(
                intent.action,
                f"Modification requested for plan {plan.id}: {requested}. "
                "Submit a revised plan to continue.",
                plan,
            )

        return ReplyOutcome(
            intent.action,
            "Unrecognised reply. Use approve, reject, explain or modify.",
            plan,
        )
