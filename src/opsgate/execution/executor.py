"""Sequential step executor with timeouts and rollback."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from opsgate.audit.log import AuditLog
from opsgate.audit.models import AuditLogEntry, AuditStatus
from opsgate.config import ExecutionSettings
from opsgate.domain.plans import (
    ApprovalStatus,
    ExecutionPlan,
    ExecutionStatus,
    ExecutionStep,
    PlanExecutionResult,
    StepResult,
    StepStatus,
)
from opsgate.errors import PlanStateError
from opsgate.execution.runner import (
    CommandResult,
    CommandRunner,
    DryRunRunner,
    SubprocessRunner,
)
from opsgate.store.base import PlanStore
from opsgate.utils.time import utc_now

logger = logging.getLogger(__name__)

_TIMEOUT_RE = re.compile(r"^(\d+)(s|m|h)$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class StepExecutor:
    """Runs an approved plan's steps one at a time.

    State machine over ``plan.execution.status``::

        pending/failed/rolled_back -> in_progress -> completed
                                                  -> failed       (step failed, no rollback)
                                                  -> rolled_back  (step failed, rollback ran)
                                                  -> failed       (cancelled or interrupted)

    Step failures are recorded on the plan and in the audit log; they never
    propagate out of ``execute``. Cancellation and write errors do propagate,
    after the plan has been marked failed.
    """

    def __init__(
        self,
        store: PlanStore,
        audit: AuditLog,
        settings: ExecutionSettings | None = None,
        runner: CommandRunner | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._settings = settings or ExecutionSettings()
        if runner is None:
            runner = DryRunRunner() if self._settings.dry_run else SubprocessRunner()
        self._runner = runner
        self._clock = clock

    @property
    def dry_run(self) -> bool:
        return isinstance(self._runner, DryRunRunner)

    def parse_timeout(self, timeout: str | None) -> int:
        """Convert ``30s``/``5m``/``2h`` to seconds; anything else gets the default."""
        match = _TIMEOUT_RE.match(timeout or "")
        if not match:
            return self._settings.default_timeout_seconds
        return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, plan: ExecutionPlan) -> PlanExecutionResult:
        """Execute an approved plan.

        If the run is interrupted (cancellation, or a store or audit write
        raising), the plan is marked ``failed`` before the exception
        propagates, so it never stays ``in_progress``.

        Raises:
            PlanStateError: If the plan is not approved, already completed or
                already running. Nothing is modified in that case.
        """
        started = time.monotonic()

        with self._store.lock(plan.id):
            self._ensure_executable(plan)
            execution = plan.execution
            execution.status = ExecutionStatus.IN_PROGRESS
            execution.started_at = self._clock()
            execution.completed_at = None
            execution.current_step = 0
            execution.completed_steps = []
            execution.errors = []
            try:
                self._store.update(plan)
            except BaseException as exc:
                self._abort(plan, started, exc)
                raise

        try:
            return await self._run(plan, started)
        except BaseException as exc:
            self._abort(plan, started, exc)
            raise

    async def _run(self, plan: ExecutionPlan, started: float) -> PlanExecutionResult:
        self._log(plan, "execution_started", AuditStatus.PENDING)

        if not self._run_checks(plan, "pre-flight", plan.validation.pre_flight):
            plan.execution.errors.append("Pre-flight checks failed")
            return self._finish(plan, started, [], succeeded=False, rolled_back=False)

        step_results: list[StepResult] = []
        all_succeeded = True

        for index, step in enumerate(plan.steps, start=1):
            plan.execution.current_step = index
            self._persist(plan)

            logger.info("Plan %s: executing %s: %s", plan.id, step.id, step.description)
            result = await self._execute_step(step)
            step_results.append(result)

            if result.status == StepStatus.SUCCESS:
                plan.execution.completed_steps.append(step.id)
                logger.info("Plan %s: %s completed", plan.id, step.id)
            elif result.status == StepStatus.FAILED:
                all_succeeded = False
                plan.execution.errors.append(f"Step {step.id} failed: {result.error}")
                logger.error("Plan %s: %s failed: %s", plan.id, step.id, result.error)
                break
            else:
                logger.info("Plan %s: %s skipped (no command)", plan.id, step.id)

        rolled_back = False
        if not all_succeeded and plan.rollback is not None:
            logger.warning("Plan %s: execution failed, attempting rollback", plan.id)
            rolled_back = await self.rollback(plan)

        if all_succeeded and not self._run_checks(
            plan, "post-execution", plan.validation.post_execution
        ):
            plan.execution.errors.append("Post-execution checks failed")
            all_succeeded = False

        return self._finish(plan, started, step_results, all_succeeded, rolled_back)

    async def rollback(self, plan: ExecutionPlan) -> bool:
        """Run the plan's rollback commands best-effort.

        Returns False when the plan has no rollback configuration. Otherwise
        every command is attempted even if earlier ones fail, the plan ends
        ``rolled_back`` and a ``rollback`` audit entry is written.
        """
        if plan.rollback is None:
            logger.info("Plan %s: no rollback procedure defined", plan.id)
            return False

        commands = plan.rollback.commands or []
        logger.warning(
            "Plan %s: executing rollback (%s, %d commands)",
            plan.id,
            plan.rollback.method,
            len(commands),
        )

        failed_commands: list[str] = []
        for command in commands:
            logger.info("Plan %s: rollback running %s", plan.id, command)
            result = await self._run_command(command, self._settings.default_timeout_seconds)
            if not result.success:
                failed_commands.append(command)
                logger.warning("Plan %s: rollback command failed: %s", plan.id, result.error)

        plan.execution.status = ExecutionStatus.ROLLED_BACK
        self._persist(plan)

        self._log(
            plan,
            "rollback",
            AuditStatus.SUCCESS,
            notes="Rollback completed",
            metadata={
                "method": plan.rollback.method,
                "commandsRun": len(commands),
                "failedCommands": failed_commands,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_executable(self, plan: ExecutionPlan) -> None:
        stored = self._store.load(plan.id)
        candidates = [plan] if stored is None else [plan, stored]
        for candidate in candidates:
            approval = candidate.approval.status
            if approval != ApprovalStatus.APPROVED:
                raise PlanStateError(
                    f"Plan {plan.id} is not approved. Current status: {approval.value}",
                    plan_id=plan.id,
                    status=approval.value,
                )
            status = candidate.execution.status
            if status == ExecutionStatus.COMPLETED:
                raise PlanStateError(
                    f"Plan {plan.id} has already been executed",
                    plan_id=plan.id,
                    status=status.value,
                )
            if status == ExecutionStatus.IN_PROGRESS:
                raise PlanStateError(
                    f"Plan {plan.id} is already being executed",
                    plan_id=plan.id,
                    status=status.value,
                )

    async def _execute_step(self, step: ExecutionStep) -> StepResult:
        started = time.monotonic()
        if not step.command:
            return StepResult(
                step_id=step.id,
                status=StepStatus.SKIPPED,
                output="No command specified",
                duration_ms=_elapsed_ms(started),
            )

        result = await self._run_command(step.command, self.parse_timeout(step.timeout))
        return StepResult(
            step_id=step.id,
            status=StepStatus.SUCCESS if result.success else StepStatus.FAILED,
            output=result.output,
            error=result.error,
            duration_ms=_elapsed_ms(started),
        )

    async def _run_command(self, command: str, timeout_seconds: float) -> CommandResult:
        try:
            return await self._runner.run(command, timeout_seconds)
        except Exception as exc:
            logger.exception("Runner raised while running %r", command)
            return CommandResult(success=False, error=f"{type(exc).__name__}: {exc}")

    def _run_checks(self, plan: ExecutionPlan, label: str, checks: Any) -> bool:
        # Checks are descriptive only; they pass as long as the list can be walked.
        try:
            items = list(checks)
        except TypeError:
            logger.error("Plan %s: %s checks are not a list", plan.id, label)
            return False
        if items:
            logger.info("Plan %s: running %s checks", plan.id, label)
            for check in items:
                logger.info("Plan %s:   check: %s", plan.id, check)
        return True

    def _finish(
        self,
        plan: ExecutionPlan,
        started: float,
        step_results: list[StepResult],
        succeeded: bool,
        rolled_back: bool,
    ) -> PlanExecutionResult:
        if succeeded:
            plan.execution.status = ExecutionStatus.COMPLETED
        elif rolled_back:
            plan.execution.status = ExecutionStatus.ROLLED_BACK
        else:
            plan.execution.status = ExecutionStatus.FAILED
        plan.execution.completed_at = self._clock()
        self._persist(plan)

        total_ms = _elapsed_ms(started)
        self._log(
            plan,
            "execution_completed",
            AuditStatus.SUCCESS if succeeded else AuditStatus.FAILED,
            duration_seconds=round(total_ms / 1000, 3),
            notes="Rolled back after failure" if rolled_back else None,
        )
        logger.info(
            "Plan %s finished with status %s in %d ms",
            plan.id,
            plan.execution.status.value,
            total_ms,
        )
        return PlanExecutionResult(
            plan_id=plan.id,
            success=succeeded,
            step_results=step_results,
            total_duration_ms=total_ms,
            rolled_back=rolled_back,
        )

    def _abort(self, plan: ExecutionPlan, started: float, exc: BaseException) -> None:
        if isinstance(exc, asyncio.CancelledError):
            reason = "Execution cancelled"
        else:
            reason = f"Execution aborted: {type(exc).__name__}: {exc}"
        logger.error("Plan %s: %s", plan.id, reason)

        execution = plan.execution
        # A status already settled by rollback or _finish is kept.
        if execution.status == ExecutionStatus.IN_PROGRESS:
            execution.status = ExecutionStatus.FAILED
        execution.errors.append(reason)
        execution.completed_at = self._clock()

        # The original exception is re-raised by the caller.
        try:
            self._persist(plan)
            self._log(
                plan,
                "execution_completed",
                AuditStatus.FAILED,
                duration_seconds=round(_elapsed_ms(started) / 1000, 3),
                notes=reason,
            )
        except Exception:
            logger.exception("Plan %s: failed to record aborted execution", plan.id)

    def _persist(self, plan: ExecutionPlan) -> None:
        with self._store.lock(plan.id):
            self._store.update(plan)

    def _log(
        self,
        plan: ExecutionPlan,
        action: str,
        status: AuditStatus,
        duration_seconds: float | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._audit.log_action(
            AuditLogEntry(
                plan_id=plan.id,
                action=action,
                risk_level=plan.risk_level,
                status=status,
                duration_seconds=duration_seconds,
                approver=plan.approval.approver,
                notes=notes,
                metadata=metadata,
            )
        )

