"""Derive envelope funding state from a rule and its live balance."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .formatting import format_currency
from .models import (
    POD_ACCOUNT_TYPE,
    STATUS_BUFFER_BREACHED,
    STATUS_OK,
    AccountBalance,
    EnvelopeRule,
    EnvelopeState,
)
from .money import round2

logger = logging.getLogger(__name__)


def compute_envelope_state(rule: EnvelopeRule, balance_dollars: Optional[float]) -> EnvelopeState:
    """Combine ``rule`` with its balance (``None`` when unknown).

    The status set here is only the buffer signal; due-date refinement
    happens in :func:`envelope_engine.issues.detect_issues`.
    """
    required_floor = round2(rule.monthly_budget_dollars * rule.buffer_months)
    due_amount = rule.effective_due_amount
    required_by_due = round2(required_floor + due_amount) if rule.has_due_day else None
    available = None if balance_dollars is None else round2(balance_dollars - required_floor)

    status = STATUS_OK
    reason = None
    if available is not None and available < 0:
        status = STATUS_BUFFER_BREACHED
        reason = f"Below required floor by {format_currency(abs(available))}."

    return EnvelopeState(
        name=rule.name,
        balance_dollars=balance_dollars,
        monthly_budget_dollars=rule.monthly_budget_dollars,
        due_by_day=rule.due_by_day,
        due_amount_dollars=due_amount,
        buffer_months=rule.buffer_months,
        required_floor_dollars=required_floor,
        required_by_due_dollars=required_by_due,
        available_to_spend_dollars=available,
        status=status,
        status_reason=reason,
        priority_group=rule.priority_group,
        protected=rule.protected,
    )


def balances_by_name(accounts: Iterable[AccountBalance]) -> Dict[str, Optional[float]]:
    """Index pod balances by exact envelope name."""
    return {a.name: a.balance_dollars for a in accounts if a.type == POD_ACCOUNT_TYPE}


def compute_envelope_states(
    accounts: Iterable[AccountBalance],
    rules: Sequence[EnvelopeRule],
) -> List[EnvelopeState]:
    balances = balances_by_name(accounts)
    states = [compute_envelope_state(rule, balances.get(rule.name)) for rule in rules]
    missing = [s.name for s in states if s.balance_dollars is None]
    if missing:
        logger.debug("No live balance for %d envelope(s): %s", len(missing), ', '.join(missing))
    return states
