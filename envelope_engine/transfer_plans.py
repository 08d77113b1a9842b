"""Plans for a transfer the user already made between two envelopes.

There is no detected issue behind these plans: the engine synthesizes an
informational one so the result has the same shape as
:func:`envelope_engine.plans.generate_plans`.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .formatting import format_currency as usd
from .models import (
    ISSUE_STRUCTURAL_UNDERFUND,
    SEVERITY_INFO,
    DetectedIssue,
    EnvelopeRule,
    EnvelopeState,
    FixPlan,
    FixPlanOption,
    PlanStep,
    RoutingOverrideStep,
    RuleChangeStep,
)
from .money import BPS_TOTAL, round2
from .plans import (
    STRUCTURAL_CAUTION,
    assumed_deposit_size,
    collect_restore_transfers,
    deposit_estimate_warning,
    recommend,
    routing_delta_bps,
    routing_deposit_count,
)
from .policy import group_rank, is_discretionary_like, is_protected_reduction_allowed, sort_by_rank

logger = logging.getLogger(__name__)


def _protected_warning(name: str) -> str:
    return f"Routing donor {name} is protected; reply ALLOW to use it or pick another envelope."


def _fallback_donor(
    donors_sorted: Sequence[EnvelopeState],
    states: Sequence[EnvelopeState],
    exclude: set,
) -> Optional[EnvelopeState]:
    preferred = next(
        (d for d in donors_sorted if is_discretionary_like(d.priority_group) and d.name not in exclude),
        None,
    )
    if preferred is not None:
        return preferred
    known = [s for s in states if s.balance_dollars is not None and s.name not in exclude]
    known.sort(key=lambda s: group_rank(s.priority_group))
    return known[0] if known else None


def generate_transfer_plans(
    amount_dollars: float,
    from_envelope: str,
    to_envelope: str,
    states: Sequence[EnvelopeState],
    rules: Sequence[EnvelopeRule],
    catch_all_envelope_name: str,
    deposit_amount_assumption_dollars: float,
    routing_deposits: int,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> List[FixPlan]:
    """Plan how to make ``from_envelope`` whole after it funded ``to_envelope``."""
    amount = max(0.0, round2(amount_dollars))
    exclude = {from_envelope, to_envelope}
    by_name = {state.name: state for state in states}
    rule_by_name = {rule.name: rule for rule in rules}
    catch_all_state = by_name.get(catch_all_envelope_name)
    catch_all_known = catch_all_state is not None or catch_all_envelope_name in rule_by_name

    issue = DetectedIssue(
        type=ISSUE_STRUCTURAL_UNDERFUND,
        envelope_name=f"{from_envelope} → {to_envelope}",
        severity=SEVERITY_INFO,
        shortfall_dollars=amount,
        reason=f"Transfer noted: moved {usd(amount)} from {from_envelope} to {to_envelope}.",
    )
    donors_sorted = sort_by_rank(states)

    # A: refill the source envelope from other donors
    restore = collect_restore_transfers(
        donors_sorted,
        recipient=from_envelope,
        needed=amount,
        exclude=exclude,
        allow_safety_net=allow_safety_net,
        allow_protected_reduction=allow_protected_reduction,
    )
    found = round2(amount - restore.remaining)
    option_a = FixPlanOption(
        option_id='A',
        label="Restore donor now (manual transfers)",
        vocabulary='RESTORE',
        summary=(
            f"Move {usd(found)} into {from_envelope} now from: {', '.join(restore.donors)}."
            if restore.steps
            else f"No safe donors available to restore {usd(amount)} into {from_envelope} right now."
        ),
        steps=restore.steps,
        warnings=(
            [f"Only found {usd(found)} of surplus above floors without touching locked envelopes."]
            if restore.remaining > 0
            else []
        ),
    )

    # B: route future deposits back into the source (and the recipient if it is still short)
    deposits = routing_deposit_count(routing_deposits)
    assumed = assumed_deposit_size(deposit_amount_assumption_dollars)
    delta = routing_delta_bps(amount, deposits, assumed)

    donor_name: Optional[str] = None
    donor_state: Optional[EnvelopeState] = None
    blocked_name: Optional[str] = None
    if catch_all_known:
        donor_name = catch_all_envelope_name
        donor_state = catch_all_state
    else:
        candidate = _fallback_donor(donors_sorted, states, exclude)
        if candidate is not None:
            if is_protected_reduction_allowed(candidate, allow_safety_net, allow_protected_reduction):
                donor_name = candidate.name
                donor_state = candidate
            else:
                blocked_name = candidate.name

    steps: List[PlanStep] = [
        RoutingOverrideStep(envelope=from_envelope, delta_bps=max(0, delta), remaining_deposits=deposits),
    ]

    recipient = by_name.get(to_envelope)
    recipient_short = 0.0
    if (
        recipient is not None
        and recipient.balance_dollars is not None
        and recipient.required_by_due_dollars is not None
        and recipient.balance_dollars < recipient.required_by_due_dollars
    ):
        recipient_short = round2(recipient.required_by_due_dollars - recipient.balance_dollars)
    recipient_delta = (
        routing_delta_bps(recipient_short, deposits, assumed, round_per_deposit=False) if recipient_short > 0 else 0
    )
    if recipient_delta > 0 and to_envelope != from_envelope:
        steps.append(
            RoutingOverrideStep(envelope=to_envelope, delta_bps=recipient_delta, remaining_deposits=deposits)
        )

    warnings = [deposit_estimate_warning(assumed)]
    if (
        donor_state is not None
        and donor_state.protected
        and not is_protected_reduction_allowed(donor_state, allow_safety_net, allow_protected_reduction)
    ):
        warnings.append(_protected_warning(donor_state.name))
    if blocked_name:
        warnings.append(_protected_warning(blocked_name))
    if donor_name is None and delta != 0:
        warnings.append("No donor envelope found to offset the routing change; consider a manual transfer instead.")

    total_delta = max(0, delta) + max(0, recipient_delta)
    if donor_name and donor_name != from_envelope and total_delta != 0:
        steps.append(
            RoutingOverrideStep(envelope=donor_name, delta_bps=-total_delta, remaining_deposits=deposits)
        )

    if blocked_name and donor_name is None and delta != 0:
        routing_summary = (
            f"Routing needs a donor. Reply ALLOW to use {blocked_name}, or tell me a different envelope."
        )
    elif delta == 0:
        routing_summary = "Needed amount is too small relative to the deposit estimate to express cleanly in bps."
    else:
        approx = round2(assumed * delta / BPS_TOTAL)
        routing_summary = f"For next {deposits} deposits: +{delta} bps to {from_envelope} (≈{usd(approx)}/deposit)."

    option_b = FixPlanOption(
        option_id='B',
        label=f"Update next {deposits} deposit(s) (auto routing)",
        vocabulary='ROUTING',
        summary=routing_summary,
        steps=steps,
        warnings=warnings,
    )

    # C: make the recipient's rule absorb the transfer
    recipient_rule = rule_by_name.get(to_envelope)
    structural_steps: List[PlanStep] = []
    if recipient_rule is not None and recipient_rule.has_due_day:
        suggested = round2(recipient_rule.effective_due_amount + amount)
        structural_steps.append(RuleChangeStep(envelope=to_envelope, changes={'dueAmountDollars': suggested}))
        structural_summary = f"Increase {to_envelope} due_amount to {usd(suggested)} to absorb recurring transfers."
    elif recipient_rule is not None:
        suggested = round2(recipient_rule.monthly_budget_dollars + amount)
        structural_steps.append(RuleChangeStep(envelope=to_envelope, changes={'monthlyBudgetDollars': suggested}))
        structural_summary = (
            f"If this {usd(amount)} happens every month, increase {to_envelope} monthly_budget to "
            f"{usd(suggested)}. Otherwise keep budget and use Restore/Routing."
        )
    else:
        structural_summary = f"Update {to_envelope} rule so recurring transfers don't create surprise shortfalls."

    option_c = FixPlanOption(
        option_id='C',
        label="Make it structural (change the rule)",
        vocabulary='STRUCTURAL',
        summary=structural_summary,
        steps=structural_steps,
        warnings=[STRUCTURAL_CAUTION],
    )

    logger.debug("Transfer plan %s -> %s for %s", from_envelope, to_envelope, usd(amount))
    return [
        FixPlan(
            issue=issue,
            options=[option_a, option_b, option_c],
            recommended_option_id=recommend(restore, delta),
        )
    ]
