"""Risk-based approval gate for execution plans."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from opsgate.approval.formatting import explain_step, format_plan
from opsgate.audit.log import AuditLog
from opsgate.audit.models import AuditLogEntry, AuditStatus
from opsgate.domain.plans import ApprovalStatus, ExecutionPlan, ExecutionStatus, RiskLevel
from opsgate.errors import ApprovalBlockedError, PlanStateError
from opsgate.policy.intents import ApprovalIntent, parse_response
from opsgate.policy.models import ApprovalPolicy, ResponseKeywords
from opsgate.store.base import PlanStore
from opsgate.utils.time import utc_now

logger = logging.getLogger(__name__)

OVERRIDE_TAG = "[CRITICAL OVERRIDE]"


class ApprovalGate:
    """Applies approval policy to pending plans and persists the outcome.

    Every transition re-checks, under the store's per-plan lock, that both the
    given plan object and its stored record are still pending. A plan that
    has moved on is rejected with ``PlanStateError`` and left untouched.
    """

    def __init__(
        self,
        store: PlanStore,
        policy: ApprovalPolicy | None = None,
        keywords: ResponseKeywords | None = None,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._policy = policy or ApprovalPolicy()
        self._keywords = keywords or ResponseKeywords()
        self._audit = audit
        self._clock = clock

    @property
    def policy(self) -> ApprovalPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Policy queries
    # ------------------------------------------------------------------

    def requires_approval(self, plan: ExecutionPlan) -> bool:
        return plan.risk_level in self._policy.require_approval

    def can_auto_approve(self, plan: ExecutionPlan) -> bool:
        return self._policy.auto_approve_low_risk and plan.risk_level == RiskLevel.LOW

    def is_blocked(self, plan: ExecutionPlan) -> bool:
        return self._policy.block_critical and plan.risk_level == RiskLevel.CRITICAL

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(
        self, plan: ExecutionPlan, approver: str, comment: str | None = None
    ) -> ExecutionPlan:
        """Approve a pending plan.

        Raises:
            ApprovalBlockedError: If policy blocks the plan's risk level.
            PlanStateError: If the plan is no longer pending.
        """
        if self.is_blocked(plan):
            raise ApprovalBlockedError(
                f"CRITICAL risk plans are blocked. Use explicit override to approve plan {plan.id}",
                plan_id=plan.id,
            )

        with self._store.lock(plan.id):
            self._ensure_pending(plan)
            self._mark_approved(plan, approver, comment)
            self._store.update(plan)

        logger.info("Plan %s approved by %s", plan.id, approver)
        self._record(plan, "plan_approved", AuditStatus.SUCCESS, approver, comment)
        return plan

    def approve_with_override(
        self, plan: ExecutionPlan, approver: str, comment: str | None = None
    ) -> ExecutionPlan:
        """Approve regardless of risk level, tagging the comment as an override."""
        with self._store.lock(plan.id):
            self._ensure_pending(plan)
            tagged = f"{OVERRIDE_TAG} {comment or 'Explicit approval'}"
            self._mark_approved(plan, approver, tagged)
            self._store.update(plan)

        logger.warning(
            "Plan %s (%s) approved with override by %s", plan.id, plan.risk_level.value, approver
        )
        self._record(
            plan, "plan_override_approved", AuditStatus.SUCCESS, approver, plan.approval.comment
        )
        return plan

    def reject(
        self, plan: ExecutionPlan, approver: str, reason: str | None = None
    ) -> ExecutionPlan:
        with self._store.lock(plan.id):
            self._ensure_pending(plan)
            plan.approval.status = ApprovalStatus.REJECTED
            plan.approval.approver = approver
            plan.approval.approved_at = self._clock()
            plan.approval.comment = reason
            plan.execution.status = ExecutionStatus.CANCELLED
            self._store.update(plan)

        logger.info("Plan %s rejected by %s", plan.id, approver)
        self._record(plan, "plan_rejected", AuditStatus.CANCELLED, approver, reason)
        return plan

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def parse_response(self, text: str) -> ApprovalIntent:
        return parse_response(text, self._keywords)

    def format_plan(self, plan: ExecutionPlan) -> str:
        return format_plan(plan)

    def explain_step(self, plan: ExecutionPlan, step_id: str | None = None) -> str:
        return explain_step(plan, step_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_pending(self, plan: ExecutionPlan) -> None:
        stored = self._store.load(plan.id)
        for status in (plan.approval.status, stored.approval.status if stored else None):
            if status is not None and status != ApprovalStatus.PENDING:
                raise PlanStateError(
                    f"Plan {plan.id} is not pending approval. Current status: {status.value}",
                    plan_id=plan.id,
                    status=status.value,
                )

    def _mark_approved(self, plan: ExecutionPlan, approver: str, comment: str | None) -> None:
        plan.approval.status = ApprovalStatus.APPROVED
        plan.approval.approver = approver
        plan.approval.approved_at = self._clock()
        if comment:
            plan.approval.comment = comment

    def _record(
        self,
        plan: ExecutionPlan,
        action: str,
        status: AuditStatus,
        approver: str,
        notes: str | None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_action(
            AuditLogEntry(
                plan_id=plan.id,
                action=action,
                risk_level=plan.risk_level,
                status=status,
                approver=approver,
                notes=notes,
            )
        )
