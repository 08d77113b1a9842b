"""Build ranked A/B/C remediation plans for detected issues.

Every plan carries exactly three options:

* **A, RESTORE**: manual transfers now from eligible donors.
* **B, ROUTING**: shift basis points of the next few deposits.
* **C, STRUCTURAL**: change the envelope rule so the issue stops recurring.

An option with no steps is still a valid answer; its warnings explain why.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Collection, Dict, List, Optional, Sequence

from .formatting import format_currency as usd
from .models import (
    ISSUE_OVERSPEND,
    ISSUE_TIMING_SHORTFALL,
    DetectedIssue,
    EnvelopeState,
    FixPlan,
    FixPlanOption,
    PlanStep,
    RoutingOverrideStep,
    RuleChangeStep,
    TransferStep,
)
from .money import BPS_TOTAL, clamp_int, round2, round_int
from .policy import can_borrow_from_donor, group_rank, is_discretionary_like, sort_by_rank

logger = logging.getLogger(__name__)

MAX_RESTORE_TRANSFERS = 3
MIN_ROUTING_DEPOSITS = 1
MAX_ROUTING_DEPOSITS = 12
STRUCTURAL_CAUTION = (
    "This changes the rule definition; apply only if the underlying budget target is truly wrong."
)


@dataclass(frozen=True)
class RestoreResult:
    steps: List[PlanStep]
    donors: List[str]
    remaining: float


def collect_restore_transfers(
    donors_sorted: Sequence[EnvelopeState],
    recipient: str,
    needed: float,
    exclude: Collection[str],
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> RestoreResult:
    """Pull surplus from donors in rank order until ``needed`` is met.

    Never takes more than a donor's available-to-spend and stops after
    :data:`MAX_RESTORE_TRANSFERS` transfers.
    """
    steps: List[PlanStep] = []
    used: List[str] = []
    remaining = needed

    for donor in donors_sorted:
        if remaining <= 0:
            break
        if donor.name in exclude:
            continue
        if not can_borrow_from_donor(donor, allow_safety_net, allow_protected_reduction).ok:
            continue

        take = min(donor.available_to_spend_dollars or 0.0, remaining)
        if take <= 0:
            continue

        steps.append(TransferStep(from_envelope=donor.name, to_envelope=recipient, amount_dollars=round2(take)))
        used.append(donor.name)
        remaining = round2(remaining - take)
        if len(steps) >= MAX_RESTORE_TRANSFERS:
            break

    return RestoreResult(steps=steps, donors=used, remaining=remaining)


def routing_deposit_count(routing_deposits: int) -> int:
    return clamp_int(routing_deposits, MIN_ROUTING_DEPOSITS, MAX_ROUTING_DEPOSITS)


def assumed_deposit_size(deposit_amount_assumption_dollars: float) -> float:
    return max(0.01, deposit_amount_assumption_dollars)


def routing_delta_bps(needed: float, deposits: int, assumed_deposit: float, round_per_deposit: bool = True) -> int:
    """Express ``needed`` spread over ``deposits`` deposits as a bps delta.

    The per-deposit share is rounded to cents first unless ``round_per_deposit`` is off.
    """
    per_deposit = needed / deposits
    if round_per_deposit:
        per_deposit = round2(per_deposit)
    return clamp_int(round_int(per_deposit / assumed_deposit * BPS_TOTAL), -BPS_TOTAL, BPS_TOTAL)


def routing_deposits_for_restore_days(
    restore_days: Optional[int],
    cadence_days: int,
    default: int,
) -> int:
    """Translate "fix this within N days" into a number of deposits."""
    if restore_days is not None and restore_days > 0:
        return max(1, math.ceil(restore_days / max(1, cadence_days)))
    return default


def deposit_estimate_warning(assumed_deposit: float) -> str:
    return (
        f"Routing uses a deposit-size estimate of {usd(assumed_deposit)}; "
        "actual dollars may differ per deposit."
    )


def recommend(restore: RestoreResult, delta_bps: int) -> str:
    if restore.steps and restore.remaining <= 0:
        return 'A'
    if delta_bps != 0:
        return 'B'
    return 'C'


def _pick_routing_donor(
    donors_sorted: Sequence[EnvelopeState],
    states: Sequence[EnvelopeState],
    target: str,
) -> Optional[EnvelopeState]:
    preferred = next(
        (d for d in donors_sorted if is_discretionary_like(d.priority_group) and d.name != target),
        None,
    )
    if preferred is not None:
        return preferred
    known = [s for s in states if s.balance_dollars is not None]
    known.sort(key=lambda s: group_rank(s.priority_group))
    return known[0] if known else None


def _restore_option(target: EnvelopeState, needed: float, restore: RestoreResult) -> FixPlanOption:
    found = round2(needed - restore.remaining)
    warnings = []
    if restore.remaining > 0:
        warnings.append(
            f"Only found {usd(found)} of surplus above floors without touching locked envelopes."
        )
    if restore.steps:
        summary = f"Move {usd(found)} into {target.name} now from: {', '.join(restore.donors)}."
    else:
        summary = f"No safe donors available to restore {usd(needed)} right now."
    return FixPlanOption(
        option_id='A',
        label="Restore now (manual transfers)",
        vocabulary='RESTORE',
        summary=summary,
        steps=restore.steps,
        warnings=warnings,
    )


def _routing_option(
    target: EnvelopeState,
    needed: float,
    states: Sequence[EnvelopeState],
    donors_sorted: Sequence[EnvelopeState],
    deposit_amount_assumption_dollars: float,
    routing_deposits: int,
    allow_protected_reduction: bool,
) -> FixPlanOption:
    deposits = routing_deposit_count(routing_deposits)
    assumed = assumed_deposit_size(deposit_amount_assumption_dollars)
    delta = routing_delta_bps(needed, deposits, assumed)
    donor = _pick_routing_donor(donors_sorted, states, target.name)

    steps: List[PlanStep] = [
        RoutingOverrideStep(envelope=target.name, delta_bps=max(0, delta), remaining_deposits=deposits),
    ]
    if donor is not None and donor.name != target.name and delta != 0:
        steps.append(
            RoutingOverrideStep(envelope=donor.name, delta_bps=-max(0, delta), remaining_deposits=deposits)
        )

    warnings = [deposit_estimate_warning(assumed)]
    if donor is not None and donor.protected and not allow_protected_reduction:
        warnings.append(f"Routing donor {donor.name} is protected; it will not be reduced unless allowed.")

    if delta == 0:
        summary = "Needed amount is too small relative to the deposit estimate to express cleanly in bps."
    else:
        approx = round2(assumed * delta / BPS_TOTAL)
        summary = (
            f"For next {deposits} deposits: +{delta} bps to {target.name} "
            f"(≈{usd(approx)}/deposit)."
        )

    return FixPlanOption(
        option_id='B',
        label=f"Update next {deposits} deposit(s) (auto routing)",
        vocabulary='ROUTING',
        summary=summary,
        steps=steps,
        warnings=warnings,
    )


def _structural_option(issue: DetectedIssue, target: EnvelopeState, needed: float) -> FixPlanOption:
    if issue.type == ISSUE_TIMING_SHORTFALL:
        suggested = round2(target.due_amount_dollars + needed)
        changes: Dict[str, float] = {'dueAmountDollars': suggested}
        summary = (
            f"Increase {target.name} due_amount to {usd(suggested)} so it's funded by the due date "
            "without scrambling."
        )
    elif issue.type == ISSUE_OVERSPEND:
        suggested = round2(target.monthly_budget_dollars + needed)
        changes = {'monthlyBudgetDollars': suggested}
        summary = (
            f"Increase {target.name} monthly_budget to {usd(suggested)} (or reduce spending) "
            "so it stays above its buffer floor."
        )
    else:
        changes = {'monthlyBudgetDollars': round2(target.monthly_budget_dollars + needed)}
        summary = f"Adjust {target.name} rule upward so this doesn't repeat."

    return FixPlanOption(
        option_id='C',
        label="Make it structural (change the rule)",
        vocabulary='STRUCTURAL',
        summary=summary,
        steps=[RuleChangeStep(envelope=target.name, changes=changes)],
        warnings=[STRUCTURAL_CAUTION],
    )


def generate_plans(
    issues: Sequence[DetectedIssue],
    states: Sequence[EnvelopeState],
    deposit_amount_assumption_dollars: float,
    routing_deposits: int,
    scope_envelope_names: Optional[Collection[str]] = None,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> List[FixPlan]:
    """Return one :class:`FixPlan` per issue.

    ``scope_envelope_names`` narrows which issues are planned; donors are
    never restricted by scope.
    """
    if scope_envelope_names:
        scope = set(scope_envelope_names)
        issues = [issue for issue in issues if issue.envelope_name in scope]

    by_name = {state.name: state for state in states}
    donors_sorted = sort_by_rank(states)
    plans: List[FixPlan] = []

    for issue in issues:
        target = by_name.get(issue.envelope_name)
        if target is None:
            logger.debug("Skipping issue for unknown envelope %s", issue.envelope_name)
            continue

        needed = max(0.0, round2(issue.shortfall_dollars))
        restore = collect_restore_transfers(
            donors_sorted,
            recipient=target.name,
            needed=needed,
            exclude={target.name},
            allow_safety_net=allow_safety_net,
            allow_protected_reduction=allow_protected_reduction,
        )
        option_a = _restore_option(target, needed, restore)
        option_b = _routing_option(
            target,
            needed,
            states,
            donors_sorted,
            deposit_amount_assumption_dollars,
            routing_deposits,
            allow_protected_reduction,
        )
        option_c = _structural_option(issue, target, needed)

        delta = routing_delta_bps(
            needed,
            routing_deposit_count(routing_deposits),
            assumed_deposit_size(deposit_amount_assumption_dollars),
        )
        plans.append(
            FixPlan(
                issue=issue,
                options=[option_a, option_b, option_c],
                recommended_option_id=recommend(restore, delta),
            )
        )

    return plans
