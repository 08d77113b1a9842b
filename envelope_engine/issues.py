"""Refine envelope status with due-date math and emit typed issues.

Precedence per envelope is overdue > due_soon > buffer_breached > OK.  An
envelope without a known balance is never flagged.
"""

from __future__ import annotations

import calendar
import dataclasses
import logging
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .formatting import format_currency
from .models import (
    ISSUE_OVERSPEND,
    ISSUE_TIMING_SHORTFALL,
    SEVERITY_ERROR,
    SEVERITY_WARN,
    STATUS_BUFFER_BREACHED,
    STATUS_DUE_SOON,
    STATUS_OK,
    STATUS_OVERDUE,
    DetectedIssue,
    EnvelopeState,
)
from .money import round2

logger = logging.getLogger(__name__)


def clamp_day_of_month(year: int, month: int, day: int) -> int:
    days_in_month = calendar.monthrange(year, month)[1]
    return min(max(day, 1), days_in_month)


def due_date_this_month(today: date, due_by_day: int) -> date:
    return date(today.year, today.month, clamp_day_of_month(today.year, today.month, due_by_day))


def next_due_date(today: date, due_by_day: int) -> Tuple[date, int]:
    """Return the next due date on or after ``today`` and the days until it."""
    due = due_date_this_month(today, due_by_day)
    if today.day > due.day:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        due = date(year, month, clamp_day_of_month(year, month, due_by_day))
    return due, (due - today).days


def _has_due_day(state: EnvelopeState) -> bool:
    return state.due_by_day is not None and state.due_by_day > 0


def snapshot_dates_needed(states: Sequence[EnvelopeState], today: date) -> Dict[str, date]:
    """Envelopes whose due day already passed this month, mapped to that due date.

    The caller looks up each envelope's balance as of that date and passes the
    result to :func:`detect_issues` as ``due_date_snapshots``.
    """
    needed: Dict[str, date] = {}
    for state in states:
        if _has_due_day(state) and today.day > state.due_by_day:
            needed[state.name] = due_date_this_month(today, state.due_by_day)
    return needed


def _refine_state(
    state: EnvelopeState,
    today: date,
    window_days: int,
    snapshots: Mapping[str, Optional[float]],
) -> EnvelopeState:
    balance = state.balance_dollars
    if balance is None:
        return dataclasses.replace(state, status=STATUS_OK, status_reason=None)

    status = STATUS_OK
    reason: Optional[str] = None
    required_by_due = state.required_by_due_dollars
    dated = _has_due_day(state) and required_by_due is not None

    if dated and today.day > state.due_by_day:
        due = due_date_this_month(today, state.due_by_day)
        snapshot = snapshots.get(state.name)
        compare = snapshot if snapshot is not None else balance
        if compare < required_by_due:
            status = STATUS_OVERDUE
            short = round2(required_by_due - compare)
            if snapshot is not None:
                reason = f"Was short {format_currency(short)} on due date ({due.isoformat()})."
            else:
                reason = f"Likely short {format_currency(short)} for due date (no snapshot for {due.isoformat()})."

    if status != STATUS_OVERDUE and dated:
        _, days_until = next_due_date(today, state.due_by_day)
        if 0 <= days_until <= window_days and balance < required_by_due:
            status = STATUS_DUE_SOON
            short = round2(required_by_due - balance)
            reason = f"Needs {format_currency(short)} funded within {days_until} day(s)."

    available = state.available_to_spend_dollars
    if status == STATUS_OK and available is not None and available < 0:
        status = STATUS_BUFFER_BREACHED
        reason = f"Below floor by {format_currency(abs(available))}."

    return dataclasses.replace(state, status=status, status_reason=reason)


def _issue_for(state: EnvelopeState) -> Optional[DetectedIssue]:
    if state.balance_dollars is None:
        return None

    if state.status in (STATUS_DUE_SOON, STATUS_OVERDUE):
        required_by_due = state.required_by_due_dollars or 0.0
        shortfall = max(0.0, round2(required_by_due - state.balance_dollars))
        if shortfall <= 0:
            return None
        return DetectedIssue(
            type=ISSUE_TIMING_SHORTFALL,
            envelope_name=state.name,
            severity=SEVERITY_ERROR if state.status == STATUS_OVERDUE else SEVERITY_WARN,
            shortfall_dollars=shortfall,
            reason=state.status_reason or "Needs funding by due date.",
        )

    if state.status == STATUS_BUFFER_BREACHED:
        shortfall = max(0.0, round2(-(state.available_to_spend_dollars or 0.0)))
        return DetectedIssue(
            type=ISSUE_OVERSPEND,
            envelope_name=state.name,
            severity=SEVERITY_WARN,
            shortfall_dollars=shortfall,
            reason=state.status_reason or "Below buffer floor.",
        )
    return None


def detect_issues(
    states: Sequence[EnvelopeState],
    today: date,
    due_soon_window_days: int,
    due_date_snapshots: Optional[Mapping[str, Optional[float]]] = None,
) -> Tuple[List[EnvelopeState], List[DetectedIssue]]:
    """Return refined copies of ``states`` plus the issues they raise.

    ``due_date_snapshots`` maps envelope name to its balance on this month's
    already-passed due date, when one was recorded.
    """
    snapshots = dict(due_date_snapshots or {})
    refined = [_refine_state(s, today, due_soon_window_days, snapshots) for s in states]

    issues: List[DetectedIssue] = []
    for state in refined:
        issue = _issue_for(state)
        if issue is not None:
            issues.append(issue)

    logger.debug(
        "Detected %d issue(s) across %d envelope(s) for %s",
        len(issues),
        len(refined),
        today.isoformat(),
    )
    return refined, issues
