"""Formatting utilities for currency and plan text."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Sequence, Union

from .models import (
    DepositPlan,
    FixPlan,
    PlanStep,
    RoutingOverrideStep,
    RuleChangeStep,
    TransferStep,
)


def format_currency(amount: Union[float, int, Decimal], include_sign: bool = True) -> str:
    """Format a currency amount with proper formatting.

    Args:
        amount: The amount to format
        include_sign: Whether to include the dollar sign

    Returns:
        Formatted currency string (e.g., "$1,234.56" or "1,234.56")

    Example:
        >>> format_currency(1234.56)
        '$1,234.56'
        >>> format_currency(1234.56, include_sign=False)
        '1,234.56'
    """
    formatted = f"{amount:,.2f}"
    return f"${formatted}" if include_sign else formatted


def escape_dollar_for_markdown(text: str) -> str:
    """Escape dollar signs so Streamlit markdown does not read them as LaTeX.

    Example:
        >>> escape_dollar_for_markdown('Move $30.00 now')
        'Move \\\\$30.00 now'
    """
    return text.replace("$", "\\$")


def format_bps(bps: int) -> str:
    return f"{bps:+d} bps"


def describe_step(step: PlanStep) -> str:
    """One-line description of a plan step."""
    if isinstance(step, TransferStep):
        return f"Transfer {format_currency(step.amount_dollars)} from {step.from_envelope} to {step.to_envelope}"
    if isinstance(step, RoutingOverrideStep):
        return (
            f"Route {format_bps(step.delta_bps)} to {step.envelope} "
            f"for the next {step.remaining_deposits} deposit(s)"
        )
    if isinstance(step, RuleChangeStep):
        changes = ", ".join(f"{key}={value}" for key, value in sorted(step.changes.items()))
        return f"Change rule for {step.envelope}: {changes}"
    raise TypeError(f"Unsupported plan step: {step!r}")


def render_plan(plan: FixPlan) -> str:
    """Plain-text rendering of a plan, recommended option marked with ``*``."""
    issue = plan.issue
    lines: List[str] = [
        f"{issue.envelope_name} [{issue.type}, {issue.severity}]: "
        f"short {format_currency(issue.shortfall_dollars)}. {issue.reason}",
    ]
    for option in plan.options:
        marker = "*" if option.option_id == plan.recommended_option_id else " "
        lines.append(f"{marker} {option.option_id}) {option.vocabulary}: {option.summary}")
        for step in option.steps:
            lines.append(f"    - {describe_step(step)}")
        for warning in option.warnings:
            lines.append(f"    ! {warning}")
    return "\n".join(lines)


def render_plans(plans: Sequence[FixPlan]) -> str:
    if not plans:
        return "No funding issues found."
    return "\n\n".join(render_plan(plan) for plan in plans)


def render_deposit_plan(plan: DepositPlan) -> str:
    lines = [f"Deposit {format_currency(plan.deposit_amount_dollars)}:"]
    for line in plan.lines:
        suffix = " (catch-all)" if line.envelope_name == plan.catch_all_envelope_name else ""
        lines.append(f"  {line.envelope_name}: {line.bps} bps = {format_currency(line.amount_dollars)}{suffix}")
    for warning in plan.warnings:
        lines.append(f"  ! {warning}")
    return "\n".join(lines)
