"""Human-readable renderings of plans for review."""

from __future__ import annotations

from opsgate.domain.plans import ExecutionPlan, ExecutionStep, RiskLevel

_HEAVY_RULE = "=" * 60
_LIGHT_RULE = "-" * 60

RISK_INDICATORS: dict[RiskLevel, str] = {
    RiskLevel.LOW: "[LOW]",
    RiskLevel.MEDIUM: "[MEDIUM]",
    RiskLevel.HIGH: "[HIGH]",
    RiskLevel.CRITICAL: "[CRITICAL]",
}


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _section(lines: list[str], title: str) -> None:
    lines.append(_LIGHT_RULE)
    lines.append(title)
    lines.append(_LIGHT_RULE)


def format_plan(plan: ExecutionPlan) -> str:
    """Render the full plan followed by the reply instructions.

    The output depends only on plan content, so identical plans render
    identically.
    """
    lines: list[str] = [
        _HEAVY_RULE,
        f"EXECUTION PLAN: {plan.id}",
        _HEAVY_RULE,
        "",
        f"Title: {plan.title}",
        f"Risk Level: {RISK_INDICATORS[plan.risk_level]}",
        f"Estimated Duration: {plan.estimated_duration or 'Unknown'}",
        f"Created: {plan.created_at.isoformat()}",
        "",
    ]

    _section(lines, "CONTEXT")
    lines.append(f"Issue: {plan.context.issue}")
    if plan.context.root_cause:
        lines.append(f"Root Cause: {plan.context.root_cause}")
    if plan.context.affected_resources:
        lines.append("Affected Resources:")
        for resource in plan.context.affected_resources:
            namespace = f" (ns: {resource.namespace})" if resource.namespace else ""
            lines.append(f"  - {resource.type}/{resource.name}{namespace}")
    lines.append("")

    _section(lines, "EXECUTION STEPS")
    for step in plan.steps:
        lines.append(f"{step.id}: {step.description}")
        lines.append(f"    Action: {step.action}")
        if step.command:
            lines.append(f"    Command: {step.command}")
        lines.append(
            f"    Risk: {RISK_INDICATORS[step.risk_level]} | Reversible: {_yes_no(step.reversible)}"
        )
        lines.append("")

    if plan.rollback is not None:
        _section(lines, "ROLLBACK PLAN")
        lines.append(f"Method: {plan.rollback.method}")
        if plan.rollback.commands:
            lines.append("Commands:")
            for command in plan.rollback.commands:
                lines.append(f"  - {command}")
        if plan.rollback.estimated_time:
            lines.append(f"Estimated Rollback Time: {plan.rollback.estimated_time}")
        lines.append("")

    checks = plan.validation
    if checks.pre_flight or checks.post_execution:
        _section(lines, "VALIDATION CHECKS")
        if checks.pre_flight:
            lines.append("Pre-flight:")
            lines.extend(f"  * {check}" for check in checks.pre_flight)
        if checks.post_execution:
            lines.append("Post-execution:")
            lines.extend(f"  * {check}" for check in checks.post_execution)
        lines.append("")

    lines.extend(
        [
            _HEAVY_RULE,
            "DECISION REQUIRED",
            _HEAVY_RULE,
            "Reply with one of:",
            "  - approve / yes - Execute this plan",
            "  - reject [reason] - Cancel this plan",
            "  - explain [step-id] - Get more details",
            "  - modify [changes] - Request modifications",
            _HEAVY_RULE,
        ]
    )
    return "\n".join(lines)


def _describe_step(step: ExecutionStep) -> str:
    return "\n".join(
        [
            f"Step: {step.id}",
            f"Action: {step.action}",
            f"Description: {step.description}",
            f"Command: {step.command or 'N/A'}",
            f"Resource: {step.resource or 'N/A'}",
            f"Risk Level: {RISK_INDICATORS[step.risk_level]}",
            f"Reversible: {_yes_no(step.reversible)}",
            f"Expected Outcome: {step.expected_outcome or 'N/A'}",
            f"Timeout: {step.timeout}",
        ]
    )


def explain_step(plan: ExecutionPlan, step_id: str | None = None) -> str:
    """Detail one step, or list every step when no id is given."""
    if not step_id:
        return "\n".join(f"{s.id}: {s.action} - {s.description}" for s in plan.steps)

    step = plan.find_step(step_id)
    if step is None:
        return f"Step {step_id} not found in plan"
    return _describe_step(step)
