"""JSON fallback encoder for plan records and audit lines."""

from __future__ import annotations

import datetime
import enum
from pathlib import PurePath

from pydantic import BaseModel


def json_default(obj: object) -> object:
    """``default=`` hook for ``json.dumps``.

    Audit metadata is caller-supplied, so anything unrecognised is written
    as its ``str()`` rather than failing the append.
    """
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True)
    if isinstance(obj, PurePath):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        try:
            return sorted(obj)
        except TypeError:
            return list(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return str(obj)
