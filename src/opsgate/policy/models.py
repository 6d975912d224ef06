"""Approval policy configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from opsgate.domain.plans import RiskLevel


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


def _normalize_keywords(v: Any) -> list:
    words = _ensure_list(v)
    if any(isinstance(word, bool) for word in words):
        # YAML reads unquoted yes/no/on/off as booleans.
        raise ValueError("Keywords must be strings; quote yes/no in YAML policy files")
    return [str(word).strip().lower() for word in words if str(word).strip()]


class ResponseKeywords(BaseModel):
    """First-token keyword table used to classify free-text approval replies.

    Swap the table (for example from a policy file) to localize replies
    without touching the matching logic.
    """

    approve: list[str] = Field(
        default_factory=lambda: [
            "yes", "approve", "approved", "execute", "proceed", "confirm", "ok", "go",
        ]
    )
    reject: list[str] = Field(
        default_factory=lambda: ["no", "reject", "rejected", "cancel", "abort", "stop", "deny"]
    )
    explain: list[str] = Field(
        default_factory=lambda: ["explain", "details", "more", "why", "what", "how", "show"]
    )
    modify: list[str] = Field(
        default_factory=lambda: ["modify", "change", "edit", "update", "adjust"]
    )

    @field_validator("approve", "reject", "explain", "modify", mode="before")
    @classmethod
    def _validate_keywords(cls, v: Any) -> list:
        return _normalize_keywords(v)


class ApprovalPolicy(BaseModel):
    auto_approve_low_risk: bool = Field(default=False)
    block_critical: bool = Field(default=True)
    require_approval: list[RiskLevel] = Field(
        default_factory=lambda: [RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]
    )

    @field_validator("require_approval", mode="before")
    @classmethod
    def _validate_require_approval(cls, v: Any) -> list:
        return [str(level).upper() for level in _ensure_list(v)]


class PolicyConfig(BaseModel):
    version: int = Field(default=1)
    approval: ApprovalPolicy = Field(default_factory=ApprovalPolicy)
    keywords: ResponseKeywords = Field(default_factory=ResponseKeywords)

    @field_validator("approval", "keywords", mode="before")
    @classmethod
    def _validate_sections(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "PolicyConfig":
        return cls.model_validate(data)
