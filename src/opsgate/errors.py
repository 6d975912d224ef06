"""Error taxonomy for plan creation, approval and execution.

Step-level and rollback failures are never raised; they are recorded on the
plan and in the audit log instead.
"""

from __future__ import annotations


class OpsGateError(Exception):
    """Base class for errors raised by the execution engine."""


class ValidationError(OpsGateError, ValueError):
    """Raised when plan creation parameters are malformed."""


class PlanStateError(OpsGateError, RuntimeError):
    """Raised when an operation is not legal for the plan's current status."""

    def __init__(self, message: str, *, plan_id: str | None = None, status: str | None = None):
        super().__init__(message)
        self.plan_id = plan_id
        self.status = status


class ApprovalBlockedError(OpsGateError, RuntimeError):
    """Raised when policy blocks a plain approval and an explicit override is needed."""

    def __init__(self, message: str, *, plan_id: str | None = None):
        super().__init__(message)
        self.plan_id = plan_id


class PlanNotFoundError(OpsGateError, LookupError):
    """Raised by the service facade when a plan id has no stored record."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan not found: {plan_id}")
        self.plan_id = plan_id
