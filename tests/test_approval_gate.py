from __future__ import annotations

import pytest

from conftest import fixed_clock, make_params
from opsgate.approval.gate import ApprovalGate
from opsgate.audit.log import AuditLog
from opsgate.audit.models import AuditStatus
from opsgate.domain.plans import ApprovalStatus, ExecutionStatus, RiskLevel
from opsgate.errors import ApprovalBlockedError, PlanStateError
from opsgate.policy.intents import ApprovalAction
from opsgate.policy.models import ApprovalPolicy, ResponseKeywords
from opsgate.store import InMemoryPlanStore


def _saved_plan(store: InMemoryPlanStore, risk: str = "HIGH"):
    plan = store.create(make_params(riskLevel=risk))
    store.save(plan)
    return plan


def test_approve_marks_plan_and_persists(
    gate: ApprovalGate, store: InMemoryPlanStore, audit: AuditLog
) -> None:
    plan = _saved_plan(store)

    gate.approve(plan, "alice", "looks good")

    stored = store.load(plan.id)
    assert stored.approval.status == ApprovalStatus.APPROVED
    assert stored.approval.approver == "alice"
    assert stored.approval.approved_at == fixed_clock()
    assert stored.approval.comment == "looks good"
    assert stored.execution.status == ExecutionStatus.PENDING

    [entry] = audit.read_by_plan(plan.id)
    assert entry.action == "plan_approved"
    assert entry.status == AuditStatus.SUCCESS
    assert entry.approver == "alice"


def test_approve_without_comment_leaves_comment_unset(
    gate: ApprovalGate, store: InMemoryPlanStore
) -> None:
    plan = _saved_plan(store)
    gate.approve(plan, "alice")
    assert store.load(plan.id).approval.comment is None


def test_critical_plan_is_blocked(
    gate: ApprovalGate, store: InMemoryPlanStore, audit: AuditLog
) -> None:
    plan = _saved_plan(store, "CRITICAL")

    with pytest.raises(ApprovalBlockedError, match="Use explicit override") as excinfo:
        gate.approve(plan, "alice")

    assert excinfo.value.plan_id == plan.id
    assert not isinstance(excinfo.value, PlanStateError)
    assert plan.approval.status == ApprovalStatus.PENDING
    assert store.load(plan.id).approval.status == ApprovalStatus.PENDING
    assert audit.read_all() == []


def test_critical_plan_allowed_when_policy_does_not_block(
    store: InMemoryPlanStore,
) -> None:
    gate = ApprovalGate(store, policy=ApprovalPolicy(block_critical=False), clock=fixed_clock)
    plan = _saved_plan(store, "CRITICAL")

    gate.approve(plan, "alice")

    assert store.load(plan.id).approval.status == ApprovalStatus.APPROVED


def test_override_tags_comment(
    gate: ApprovalGate, store: InMemoryPlanStore, audit: AuditLog
) -> None:
    plan = _saved_plan(store, "CRITICAL")

    gate.approve_with_override(plan, "bob", "DB is down, need this now")

    stored = store.load(plan.id)
    assert stored.approval.status == ApprovalStatus.APPROVED
    assert stored.approval.comment == "[CRITICAL OVERRIDE] DB is down, need this now"
    [entry] = audit.read_by_plan(plan.id)
    assert entry.action == "plan_override_approved"
    assert entry.notes == stored.approval.comment


def test_override_default_comment(gate: ApprovalGate, store: InMemoryPlanStore) -> None:
    plan = _saved_plan(store, "CRITICAL")
    gate.approve_with_override(plan, "bob")
    assert plan.approval.comment == "[CRITICAL OVERRIDE] Explicit approval"


def test_reject_cancels_execution(
    gate: ApprovalGate, store: InMemoryPlanStore, audit: AuditLog
) -> None:
    plan = _saved_plan(store)

    gate.reject(plan, "carol", "too risky during peak")

    stored = store.load(plan.id)
    assert stored.approval.status == ApprovalStatus.REJECTED
    assert stored.approval.approver == "carol"
    assert stored.approval.comment == "too risky during peak"
    assert stored.execution.status == ExecutionStatus.CANCELLED
    [entry] = audit.read_by_plan(plan.id)
    assert entry.action == "plan_rejected"
    assert entry.status == AuditStatus.CANCELLED


@pytest.mark.parametrize("decide", ["approve", "reject", "approve_with_override"])
def test_decided_plan_cannot_be_decided_again(
    gate: ApprovalGate, store: InMemoryPlanStore, decide: str
) -> None:
    plan = _saved_plan(store)
    gate.reject(plan, "carol")

    with pytest.raises(PlanStateError, match="not pending approval") as excinfo:
        getattr(gate, decide)(plan, "alice")

    assert excinfo.value.status == "rejected"
    assert store.load(plan.id).approval.approver == "carol"


def test_stale_copy_cannot_overwrite_decision(
    gate: ApprovalGate, store: InMemoryPlanStore
) -> None:
    plan = _saved_plan(store)
    stale = store.load(plan.id)

    gate.approve(plan, "alice")

    with pytest.raises(PlanStateError):
        gate.reject(stale, "mallory")
    stored = store.load(plan.id)
    assert stored.approval.status == ApprovalStatus.APPROVED
    assert stored.approval.approver == "alice"
    assert stored.execution.status == ExecutionStatus.PENDING


def test_policy_queries(store: InMemoryPlanStore) -> None:
    gate = ApprovalGate(store, policy=ApprovalPolicy(auto_approve_low_risk=True))
    low = store.create(make_params(riskLevel="LOW"))
    high = store.create(make_params(riskLevel="HIGH"))
    critical = store.create(make_params(riskLevel="CRITICAL"))

    assert gate.can_auto_approve(low) is True
    assert gate.can_auto_approve(high) is False
    assert gate.requires_approval(low) is False
    assert gate.requires_approval(high) is True
    assert gate.is_blocked(critical) is True
    assert gate.is_blocked(high) is False


def test_auto_approve_is_query_only(store: InMemoryPlanStore) -> None:
    gate = ApprovalGate(store, policy=ApprovalPolicy(auto_approve_low_risk=True))
    plan = _saved_plan(store, "LOW")

    assert gate.can_auto_approve(plan)
    assert store.load(plan.id).approval.status == ApprovalStatus.PENDING


def test_gate_works_without_audit_log(store: InMemoryPlanStore) -> None:
    gate = ApprovalGate(store)
    plan = _saved_plan(store, "MEDIUM")
    gate.approve(plan, "alice")
    assert plan.risk_level == RiskLevel.MEDIUM
    assert store.load(plan.id).approval.status == ApprovalStatus.APPROVED


def test_parse_response_uses_configured_keywords(store: InMemoryPlanStore) -> None:
    gate = ApprovalGate(store, keywords=ResponseKeywords(approve=["oui"], reject=["non"]))

    assert gate.parse_response("oui merci").action == ApprovalAction.APPROVE
    assert gate.parse_response("non").action == ApprovalAction.REJECT
    assert gate.parse_response("yes").action == ApprovalAction.UNKNOWN
