"""Data models for audit log records."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from opsgate.domain.plans import RiskLevel
from opsgate.utils.serialization import json_default


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class AuditLogEntry(BaseModel):
    """One append-only audit record. Entries are frozen once built."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime | None = None
    plan_id: str
    action: str
    resource: str | None = None
    risk_level: RiskLevel
    status: AuditStatus
    duration_seconds: float | None = None
    approver: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None

    def to_line(self) -> str:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return json.dumps(payload, ensure_ascii=True, default=json_default)


class AuditStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_actions: int
    success_count: int
    failed_count: int
    risk_distribution: dict[str, int] = Field(
        default_factory=lambda: {level.value: 0 for level in RiskLevel}
    )
    recent_actions: list[AuditLogEntry] = Field(default_factory=list)
