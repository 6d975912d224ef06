"""File-backed plan store: one indented JSON record per plan."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from opsgate.store.base import PlanStore
from opsgate.utils.serialization import json_default
from opsgate.utils.time import utc_now


class FilePlanStore(PlanStore):
    def __init__(self, base_path: str, clock: Callable[[], datetime] = utc_now) -> None:
        super().__init__(clock=clock)
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    def _path_for(self, plan_id: str) -> Path:
        path = (self._base / f"{plan_id}.json").resolve()
        # Reject ids that would escape the plans directory.
        if path.parent != self._base.resolve():
            raise ValueError(f"Invalid plan id: {plan_id!r}")
        return path

    def _write(self, plan_id: str, record: dict[str, Any]) -> str:
        path = self._path_for(plan_id)
        data = json.dumps(record, ensure_ascii=True, indent=2, default=json_default)
        fd, tmp_name = tempfile.mkstemp(dir=self._base, prefix=f".{plan_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return str(path)

    def _read(self, plan_id: str) -> dict[str, Any] | None:
        path = self._path_for(plan_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def list_plans(self) -> list[str]:
        return sorted(path.stem for path in self._base.glob("*.json"))
