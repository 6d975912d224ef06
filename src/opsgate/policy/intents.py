"""Classification of free-text approval replies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from opsgate.policy.models import ResponseKeywords

DEFAULT_KEYWORDS = ResponseKeywords()


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    EXPLAIN = "explain"
    MODIFY = "modify"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ApprovalIntent:
    action: ApprovalAction
    comment: str | None = None
    query: str | None = None


def parse_response(text: str, keywords: ResponseKeywords = DEFAULT_KEYWORDS) -> ApprovalIntent:
    """Map a reply to an intent by matching its first word against the keyword table.

    The remaining words become the ``query`` for explain replies and the
    ``comment`` otherwise. An unmatched first word yields ``UNKNOWN`` with
    nothing extracted.
    """
    words = text.lower().split()
    if not words:
        return ApprovalIntent(ApprovalAction.UNKNOWN)

    first, rest = words[0], " ".join(words[1:]) or None

    if first in keywords.approve:
        return ApprovalIntent(ApprovalAction.APPROVE, comment=rest)
    if first in keywords.reject:
        return ApprovalIntent(ApprovalAction.REJECT, comment=rest)
    if first in keywords.explain:
        return ApprovalIntent(ApprovalAction.EXPLAIN, query=rest)
    if first in keywords.modify:
        return ApprovalIntent(ApprovalAction.MODIFY, comment=rest)
    return ApprovalIntent(ApprovalAction.UNKNOWN)
