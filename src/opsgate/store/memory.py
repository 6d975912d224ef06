"""In-memory plan store for tests and embedded use."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from opsgate.store.base import PlanStore
from opsgate.utils.time import utc_now


class InMemoryPlanStore(PlanStore):
    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        super().__init__(clock=clock)
        self._records: dict[str, dict[str, Any]] = {}
        self._records_lock = threading.Lock()

    def _write(self, plan_id: str, record: dict[str, Any]) -> str:
        with self._records_lock:
            self._records[plan_id] = copy.deepcopy(record)
        return f"memory://{plan_id}"

    def _read(self, plan_id: str) -> dict[str, Any] | None:
        with self._records_lock:
            record = self._records.get(plan_id)
            return copy.deepcopy(record) if record is not None else None

    def list_plans(self) -> list[str]:
        with self._records_lock:
            return list(self._records)
