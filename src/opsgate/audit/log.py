"""Append-only JSON-lines audit log.

The file starts with a ``#`` header line recording when it was created; every
other line is one ``AuditLogEntry``. Readers re-scan the whole file on every
call so they always see entries in append order, and skip lines that cannot
be parsed.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from opsgate.audit.models import AuditLogEntry, AuditStats, AuditStatus
from opsgate.domain.plans import RiskLevel
from opsgate.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_RULE = "=" * 50
_STATUS_MARKERS = {AuditStatus.SUCCESS: "+", AuditStatus.FAILED: "x"}


class AuditLog:
    def __init__(self, path: str, clock: Callable[[], datetime] = utc_now) -> None:
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        with self._lock:
            self._ensure_log_file()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_log_file(self) -> None:
        if self._path.exists():
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(f"# opsgate audit log - created {self._clock().isoformat()}\n")

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def log_action(self, entry: AuditLogEntry | Mapping[str, Any]) -> AuditLogEntry:
        """Append an entry, stamping the timestamp if it has none."""
        if not isinstance(entry, AuditLogEntry):
            entry = AuditLogEntry.model_validate(dict(entry))
        if entry.timestamp is None:
            entry = entry.model_copy(update={"timestamp": self._clock()})

        line = entry.to_line() + "\n"
        with self._lock:
            self._ensure_log_file()
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        return entry

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_all(self) -> list[AuditLogEntry]:
        if not self._path.exists():
            return []

        entries: list[AuditLogEntry] = []
        with self._path.open("r", encoding="utf-8", errors="replace") as handle:
            for lineno, raw in enumerate(handle, start=1):
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    entries.append(AuditLogEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, PydanticValidationError) as exc:
                    logger.debug("Skipping unparseable audit line %d: %s", lineno, exc)
        return entries

    def read_recent(self, limit: int = 10) -> list[AuditLogEntry]:
        if limit <= 0:
            return []
        return self.read_all()[-limit:]

    def read_by_plan(self, plan_id: str) -> list[AuditLogEntry]:
        return [entry for entry in self.read_all() if entry.plan_id == plan_id]

    def export_range(self, start: datetime, end: datetime) -> list[AuditLogEntry]:
        """Entries whose timestamp falls within [start, end]. Naive bounds are read as UTC."""
        start, end = ensure_utc(start), ensure_utc(end)
        return [
            entry
            for entry in self.read_all()
            if entry.timestamp is not None and start <= ensure_utc(entry.timestamp) <= end
        ]

    def search_by_action(self, action: str) -> list[AuditLogEntry]:
        needle = action.lower()
        return [entry for entry in self.read_all() if needle in entry.action.lower()]

    def search_by_approver(self, approver: str) -> list[AuditLogEntry]:
        needle = approver.lower()
        return [
            entry
            for entry in self.read_all()
            if entry.approver is not None and needle in entry.approver.lower()
        ]

    def get_by_risk_level(self, risk_level: RiskLevel | str) -> list[AuditLogEntry]:
        level = RiskLevel(risk_level)
        return [entry for entry in self.read_all() if entry.risk_level == level]

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_stats(self) -> AuditStats:
        entries = self.read_all()
        distribution = {level.value: 0 for level in RiskLevel}
        for entry in entries:
            distribution[entry.risk_level.value] += 1
        return AuditStats(
            total_actions=len(entries),
            success_count=sum(1 for e in entries if e.status == AuditStatus.SUCCESS),
            failed_count=sum(1 for e in entries if e.status == AuditStatus.FAILED),
            risk_distribution=distribution,
            recent_actions=entries[-5:],
        )

    def format_summary(self) -> str:
        stats = self.get_stats()
        if stats.total_actions:
            success_rate = int(stats.success_count * 100 / stats.total_actions + 0.5)
        else:
            success_rate = 0

        lines = [
            _RULE,
            "AUDIT LOG SUMMARY",
            _RULE,
            "",
            f"Total Actions: {stats.total_actions}",
            f"Success Rate: {success_rate}%",
            "",
            "Risk Distribution:",
        ]
        for level in RiskLevel:
            lines.append(f"  {level.value}: {stats.risk_distribution[level.value]}")
        lines.append("")
        lines.append("Recent Actions:")
        for entry in stats.recent_actions:
            marker = _STATUS_MARKERS.get(entry.status, "o")
            lines.append(f"  {marker} {entry.action} ({entry.plan_id}) - {entry.risk_level.value}")
        lines.append(_RULE)
        return "\n".join(lines)
