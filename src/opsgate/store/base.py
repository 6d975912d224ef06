"""Plan store interface and the creation logic shared by all backends."""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from opsgate.domain.plans import (
    ApprovalStatus,
    CreatePlanParams,
    ExecutionPlan,
    ExecutionStep,
    PlanApproval,
    PlanContext,
    PlanExecution,
    RiskLevel,
    StepSpec,
    ValidationChecks,
)
from opsgate.errors import ValidationError
from opsgate.utils.time import utc_now

logger = logging.getLogger(__name__)

_PLAN_ID_RE = re.compile(r"^plan-(\d{8})-(\d+)$")
_VALID_RISK_LEVELS = ", ".join(level.value for level in RiskLevel)


class PlanStore(ABC):
    """Creates, persists and loads execution plans keyed by plan id.

    Backends implement ``_write``, ``_read`` and ``list_plans``. The store is
    the only component that touches the persisted representation; the
    approval gate and executor mutate plans in memory and hand them back via
    ``update``.

    ``lock(plan_id)`` returns a per-id mutex. Callers that read a plan, check
    its status and write it back must hold it for the whole sequence.
    One mutex is kept per plan id ever locked, so the table grows with the
    number of plans, like the backing store does.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._id_lock = threading.Lock()
        self._issued_ids: set[str] = set()
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _write(self, plan_id: str, record: dict[str, Any]) -> str:
        """Persist a serialized plan, replacing any previous record. Returns its location."""

    @abstractmethod
    def _read(self, plan_id: str) -> dict[str, Any] | None:
        """Return the serialized plan, or None if no record exists."""

    @abstractmethod
    def list_plans(self) -> list[str]:
        """Return the ids of all stored plans."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, params: CreatePlanParams | Mapping[str, Any]) -> ExecutionPlan:
        """Validate parameters and build a new pending plan.

        The plan is not persisted; call ``save`` to store it.

        Raises:
            ValidationError: If a required field is missing or malformed.
        """
        params = _coerce_params(params)
        risk_level = _validate_params(params)

        now = self._clock()
        plan_id = self._next_plan_id(now)

        validation = params.validation or ValidationChecks()
        plan = ExecutionPlan(
            id=plan_id,
            title=params.title,
            created_at=now,
            risk_level=risk_level,
            estimated_duration=params.estimated_duration,
            context=PlanContext(
                issue=params.issue,
                root_cause=params.root_cause,
                affected_resources=list(params.affected_resources),
            ),
            steps=_format_steps(params.steps),
            rollback=params.rollback,
            approval=PlanApproval(
                required=risk_level != RiskLevel.LOW,
                status=ApprovalStatus.PENDING,
            ),
            execution=PlanExecution(),
            validation=ValidationChecks(
                pre_flight=list(validation.pre_flight),
                post_execution=list(validation.post_execution),
            ),
            metadata=params.metadata,
        )
        logger.info("Created plan %s (%s): %s", plan.id, risk_level.value, plan.title)
        return plan

    def save(self, plan: ExecutionPlan) -> str:
        """Serialize the full plan, overwriting any record with the same id."""
        location = self._write(plan.id, plan.to_record())
        logger.debug("Saved plan %s to %s", plan.id, location)
        return location

    def update(self, plan: ExecutionPlan) -> str:
        return self.save(plan)

    def load(self, plan_id: str) -> ExecutionPlan | None:
        record = self._read(plan_id)
        if record is None:
            return None
        return ExecutionPlan.from_record(record)

    def list_pending(self) -> list[ExecutionPlan]:
        pending: list[ExecutionPlan] = []
        for plan_id in self.list_plans():
            plan = self.load(plan_id)
            if plan is not None and plan.approval.status == ApprovalStatus.PENDING:
                pending.append(plan)
        return pending

    @contextmanager
    def lock(self, plan_id: str) -> Iterator[None]:
        with self._locks_guard:
            plan_lock = self._locks.setdefault(plan_id, threading.RLock())
        with plan_lock:
            yield

    # ------------------------------------------------------------------
    # Id allocation
    # ------------------------------------------------------------------

    def _next_plan_id(self, now: datetime) -> str:
        date_prefix = now.strftime("%Y%m%d")
        with self._id_lock:
            known = set(self.list_plans()) | self._issued_ids
            sequences = [
                int(match.group(2))
                for match in (_PLAN_ID_RE.match(plan_id) for plan_id in known)
                if match and match.group(1) == date_prefix
            ]
            seq = max(sequences) + 1 if sequences else 1
            plan_id = f"plan-{date_prefix}-{seq:03d}"
            # Ids from earlier days can no longer collide with new ones.
            self._issued_ids = {
                issued for issued in self._issued_ids if issued.startswith(f"plan-{date_prefix}-")
            }
            self._issued_ids.add(plan_id)
        return plan_id


def _coerce_params(params: CreatePlanParams | Mapping[str, Any]) -> CreatePlanParams:
    if isinstance(params, CreatePlanParams):
        return params
    if not isinstance(params, Mapping):
        raise ValidationError("Plan parameters must be a mapping")
    try:
        return CreatePlanParams.model_validate(dict(params))
    except PydanticValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise ValidationError("Input validation failed: " + "; ".join(errors)) from exc


def _validate_params(params: CreatePlanParams) -> RiskLevel:
    if not (params.title or "").strip():
        raise ValidationError("Plan title is required")

    try:
        risk_level = RiskLevel(params.risk_level)
    except ValueError:
        raise ValidationError(
            f"Invalid risk level: {params.risk_level}. Must be one of: {_VALID_RISK_LEVELS}"
        ) from None

    if not params.steps:
        raise ValidationError("At least one execution step is required")

    if not (params.issue or "").strip():
        raise ValidationError("Issue description is required")

    return risk_level


def _format_steps(steps: list[StepSpec]) -> tuple[ExecutionStep, ...]:
    return tuple(
        ExecutionStep(
            id=f"step-{index}",
            action=spec.action,
            description=spec.description,
            command=spec.command,
            resource=spec.resource,
            risk_level=spec.risk_level or RiskLevel.LOW,
            reversible=True if spec.reversible is None else spec.reversible,
            expected_outcome=spec.expected_outcome,
            timeout=spec.timeout or "5m",
        )
        for index, spec in enumerate(steps, start=1)
    )
