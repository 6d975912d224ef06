from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import fixed_clock, make_params
from opsgate.domain.plans import (
    ApprovalStatus,
    CreatePlanParams,
    ExecutionStatus,
    RiskLevel,
)
from opsgate.errors import ValidationError
from opsgate.store import FilePlanStore, InMemoryPlanStore


def _store(tmp_path: Path) -> FilePlanStore:
    return FilePlanStore(str(tmp_path / "plans"), clock=fixed_clock)


def test_create_builds_pending_plan(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params())

    assert plan.id == "plan-20240115-001"
    assert plan.created_at == fixed_clock()
    assert plan.risk_level == RiskLevel.HIGH
    assert plan.approval.status == ApprovalStatus.PENDING
    assert plan.approval.required is True
    assert plan.execution.status == ExecutionStatus.PENDING
    assert plan.execution.current_step == 0
    assert plan.context.affected_resources[0].namespace == "prod"


def test_create_assigns_step_ids_and_defaults(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params())

    assert [step.id for step in plan.steps] == ["step-1", "step-2", "step-3"]
    first, second, third = plan.steps
    assert first.risk_level == RiskLevel.MEDIUM
    assert first.timeout == "30s"
    assert second.risk_level == RiskLevel.LOW
    assert second.reversible is True
    assert second.timeout == "5m"
    assert third.command is None


def test_low_risk_plan_does_not_require_approval(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params(riskLevel="LOW"))
    assert plan.approval.required is False
    assert plan.approval.status == ApprovalStatus.PENDING


def test_create_accepts_params_model(store: InMemoryPlanStore) -> None:
    params = CreatePlanParams.model_validate(make_params(riskLevel=RiskLevel.CRITICAL))
    plan = store.create(params)
    assert plan.risk_level == RiskLevel.CRITICAL


def test_create_does_not_persist(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params())
    assert store.load(plan.id) is None
    assert store.list_plans() == []


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        (
            {"title": None, "riskLevel": "BOGUS", "steps": [], "issue": None},
            "Plan title is required",
        ),
        ({"title": "   "}, "Plan title is required"),
        ({"riskLevel": "EXTREME", "steps": []}, "Invalid risk level: EXTREME"),
        ({"steps": [], "issue": ""}, "At least one execution step is required"),
        ({"issue": "  "}, "Issue description is required"),
    ],
)
def test_create_validation_order(
    store: InMemoryPlanStore, overrides: dict, message: str
) -> None:
    with pytest.raises(ValidationError, match=message):
        store.create(make_params(**overrides))


def test_invalid_risk_level_lists_allowed_values(store: InMemoryPlanStore) -> None:
    with pytest.raises(ValidationError) as excinfo:
        store.create(make_params(riskLevel="EXTREME"))
    assert str(excinfo.value) == (
        "Invalid risk level: EXTREME. Must be one of: LOW, MEDIUM, HIGH, CRITICAL"
    )


def test_malformed_steps_are_reported(store: InMemoryPlanStore) -> None:
    with pytest.raises(ValidationError, match="Input validation failed"):
        store.create(make_params(steps=[{"action": "scale"}]))


def test_non_mapping_params_rejected(store: InMemoryPlanStore) -> None:
    with pytest.raises(ValidationError, match="must be a mapping"):
        store.create(["not", "a", "mapping"])  # type: ignore[arg-type]


def test_immutable_fields_cannot_be_reassigned(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params())

    with pytest.raises(PydanticValidationError):
        plan.title = "Something else"  # type: ignore[misc]
    with pytest.raises(PydanticValidationError):
        plan.risk_level = RiskLevel.LOW  # type: ignore[misc]
    with pytest.raises(PydanticValidationError):
        plan.steps[0].command = "rm -rf /"  # type: ignore[misc]
    assert isinstance(plan.steps, tuple)


def test_unsaved_ids_are_not_reissued(store: InMemoryPlanStore) -> None:
    first = store.create(make_params())
    second = store.create(make_params())
    assert first.id == "plan-20240115-001"
    assert second.id == "plan-20240115-002"


def test_issued_ids_are_pruned_when_the_day_changes() -> None:
    now = {"value": datetime(2024, 1, 15, 23, 59, tzinfo=timezone.utc)}
    store = InMemoryPlanStore(clock=lambda: now["value"])
    store.create(make_params())
    store.create(make_params())

    now["value"] = datetime(2024, 1, 16, 0, 1, tzinfo=timezone.utc)
    plan = store.create(make_params())

    assert plan.id == "plan-20240116-001"
    assert store._issued_ids == {"plan-20240116-001"}


def test_file_store_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    plan = store.create(make_params())

    location = store.save(plan)
    loaded = store.load(plan.id)

    assert Path(location) == (tmp_path / "plans" / f"{plan.id}.json").resolve()
    assert loaded == plan
    assert loaded.steps == plan.steps


def test_file_store_writes_camel_case_json(tmp_path: Path) -> None:
    store = _store(tmp_path)
    plan = store.create(make_params())
    store.save(plan)

    record = json.loads((tmp_path / "plans" / f"{plan.id}.json").read_text(encoding="utf-8"))

    assert record["id"] == plan.id
    assert record["riskLevel"] == "HIGH"
    assert record["createdAt"].startswith("2024-01-15T10:30:00")
    assert record["approval"]["status"] == "pending"
    assert record["execution"]["currentStep"] == 0
    assert record["execution"]["completedSteps"] == []
    assert record["validation"]["preFlight"] == ["Cluster reachable"]
    assert record["steps"][0]["riskLevel"] == "MEDIUM"


def test_save_overwrites_existing_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    plan = store.create(make_params())
    store.save(plan)

    plan.execution.errors.append("boom")
    store.update(plan)

    assert store.load(plan.id).execution.errors == ["boom"]
    assert store.list_plans() == [plan.id]
    assert not list((tmp_path / "plans").glob("*.tmp"))


def test_load_missing_returns_none(tmp_path: Path) -> None:
    assert _store(tmp_path).load("plan-20240115-999") is None


def test_ids_continue_after_persisted_plans(tmp_path: Path) -> None:
    first_store = _store(tmp_path)
    for _ in range(2):
        first_store.save(first_store.create(make_params()))

    second_store = _store(tmp_path)
    assert second_store.create(make_params()).id == "plan-20240115-003"


def test_id_path_traversal_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(ValueError, match="Invalid plan id"):
        store.load("../escape")


def test_list_pending_filters_by_approval_status(store: InMemoryPlanStore) -> None:
    pending = store.create(make_params())
    decided = store.create(make_params())
    decided.approval.status = ApprovalStatus.REJECTED
    store.save(pending)
    store.save(decided)

    assert [plan.id for plan in store.list_pending()] == [pending.id]


def test_memory_store_returns_copies(store: InMemoryPlanStore) -> None:
    plan = store.create(make_params())
    store.save(plan)

    loaded = store.load(plan.id)
    loaded.execution.errors.append("local only")

    assert store.load(plan.id).execution.errors == []
