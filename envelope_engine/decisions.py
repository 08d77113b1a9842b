"""Propose fix plans under a decision token and apply the option a user picks.

A proposal snapshots today's balances, computes states and issues, builds
plans and stores them verbatim.  Applying replays the stored plans, so what
gets applied is exactly what was shown, even if balances moved since.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Collection, Iterable, List, Optional

from .config import EngineSettings, load_settings
from .db import EnvelopeStore
from .floors import compute_envelope_states
from .formatting import format_bps, format_currency
from .issues import detect_issues, snapshot_dates_needed
from .models import (
    OPTION_IDS,
    POD_ACCOUNT_TYPE,
    AccountBalance,
    DetectedIssue,
    EnvelopeState,
    FixPlan,
    RoutingOverride,
    RoutingOverrideStep,
    RuleChangeStep,
    TransferStep,
    plans_from_json,
    plans_to_json,
)
from .plans import generate_plans, routing_deposits_for_restore_days
from .policy import SAFETY_NET_GROUP
from .transfer_plans import generate_transfer_plans

logger = logging.getLogger(__name__)

STATUS_APPLIED = 'applied'
STATUS_NOTHING_PENDING = 'nothing_pending'
STATUS_ALREADY_APPLIED = 'already_applied'
STATUS_UNKNOWN_OPTION = 'unknown_option'


def new_decision_token() -> str:
    """Short correlation id a user can quote back; not a secret."""
    return uuid.uuid4().hex[:8]


@dataclass
class Proposal:
    token: Optional[str]
    states: List[EnvelopeState]
    issues: List[DetectedIssue]
    plans: List[FixPlan]


@dataclass
class ApplyResult:
    status: str
    token: Optional[str] = None
    chosen_option: Optional[str] = None
    override_ids: List[str] = field(default_factory=list)
    rule_changes: List[RuleChangeStep] = field(default_factory=list)
    manual_transfers: List[TransferStep] = field(default_factory=list)
    summary_lines: List[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.status == STATUS_APPLIED


def _record_snapshots(store: EnvelopeStore, accounts: Iterable[AccountBalance], today: date) -> None:
    balances = {
        a.name: a.balance_dollars
        for a in accounts
        if a.type == POD_ACCOUNT_TYPE and a.balance_dollars is not None
    }
    store.upsert_snapshots(today, balances)


def _persist(store: EnvelopeStore, sender: str, plans: List[FixPlan]) -> Optional[str]:
    if not plans:
        return None
    token = new_decision_token()
    store.insert_decision(token, sender, plans_to_json(plans))
    logger.info("Stored decision %s for %s with %d plan(s)", token, sender, len(plans))
    return token


def propose_fix(
    store: EnvelopeStore,
    accounts: List[AccountBalance],
    today: date,
    settings: Optional[EngineSettings] = None,
    sender: str = '',
    scope_envelope_names: Optional[Collection[str]] = None,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
    restore_days: Optional[int] = None,
) -> Proposal:
    """Detect issues against current balances and store A/B/C plans for them.

    Args:
        store: Open envelope store.
        accounts: Live balances; pod balances are also kept as today's snapshot.
        today: Calendar date the request is evaluated on.
        settings: Engine knobs; defaults to :func:`load_settings`.
        sender: Who the decision belongs to.
        scope_envelope_names: Restrict plans to these envelopes.
        allow_safety_net: Permit borrowing from the SafetyNet group.
        allow_protected_reduction: Permit reducing protected envelopes.
        restore_days: "Fix within N days", converted to a deposit count.

    Returns:
        A Proposal; ``token`` is ``None`` when there was nothing to plan.
    """
    settings = settings or load_settings()
    _record_snapshots(store, accounts, today)

    rules = store.list_rules()
    states = compute_envelope_states(accounts, rules)

    due_date_snapshots = {}
    for name, due in snapshot_dates_needed(states, today).items():
        due_date_snapshots[name] = store.snapshots_for_date(due).get(name)

    refined, issues = detect_issues(
        states,
        today,
        settings.due_soon_window_days,
        due_date_snapshots=due_date_snapshots,
    )
    routing_deposits = routing_deposits_for_restore_days(
        restore_days, settings.deposit_cadence_days, settings.routing_deposits
    )
    plans = generate_plans(
        issues,
        refined,
        deposit_amount_assumption_dollars=settings.deposit_amount_assumption_dollars,
        routing_deposits=routing_deposits,
        scope_envelope_names=scope_envelope_names,
        allow_safety_net=allow_safety_net,
        allow_protected_reduction=allow_protected_reduction,
    )
    token = _persist(store, sender, plans)
    return Proposal(token=token, states=refined, issues=issues, plans=plans)


def propose_transfer_fix(
    store: EnvelopeStore,
    accounts: List[AccountBalance],
    amount_dollars: float,
    from_envelope: str,
    to_envelope: str,
    settings: Optional[EngineSettings] = None,
    sender: str = '',
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
    restore_days: Optional[int] = None,
) -> Proposal:
    """Store plans for a transfer the user already made between two envelopes."""
    settings = settings or load_settings()
    rules = store.list_rules()
    states = compute_envelope_states(accounts, rules)
    routing_deposits = routing_deposits_for_restore_days(
        restore_days, settings.deposit_cadence_days, settings.routing_deposits
    )
    plans = generate_transfer_plans(
        amount_dollars,
        from_envelope,
        to_envelope,
        states,
        rules,
        catch_all_envelope_name=settings.catch_all_envelope_name,
        deposit_amount_assumption_dollars=settings.deposit_amount_assumption_dollars,
        routing_deposits=routing_deposits,
        allow_safety_net=allow_safety_net,
        allow_protected_reduction=allow_protected_reduction,
    )
    token = _persist(store, sender, plans)
    return Proposal(token=token, states=states, issues=[plan.issue for plan in plans], plans=plans)


def apply_decision(
    store: EnvelopeStore,
    sender: str,
    chosen: str,
    token: Optional[str] = None,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> ApplyResult:
    """Apply option ``chosen`` of a stored decision exactly once.

    Without ``token`` the sender's most recent pending decision is used.
    Routing steps become overrides, rule changes are written, and transfers
    are only reported since money moves by hand.  A rule change whose rule
    has since disappeared is skipped and noted in the summary.
    """
    chosen = (chosen or '').strip().upper()
    if chosen not in OPTION_IDS:
        return ApplyResult(status=STATUS_UNKNOWN_OPTION, token=token, chosen_option=chosen)

    pending = store.get_decision(sender, token) if token else store.get_pending_decision(sender)
    if pending is None or not pending.get('plan_json'):
        return ApplyResult(status=STATUS_NOTHING_PENDING, token=token, chosen_option=chosen)

    token = pending['token']
    if pending.get('chosen_option'):
        return ApplyResult(status=STATUS_ALREADY_APPLIED, token=token, chosen_option=pending['chosen_option'])

    if not store.mark_decision_chosen(token, chosen):
        return ApplyResult(status=STATUS_ALREADY_APPLIED, token=token, chosen_option=chosen)

    plans = plans_from_json(pending['plan_json'])
    groups = {rule.name: rule.priority_group for rule in store.list_rules()}
    result = ApplyResult(status=STATUS_APPLIED, token=token, chosen_option=chosen)

    for plan in plans:
        option = plan.option(chosen)
        if option is None:
            continue
        result.summary_lines.append(f"Issue {plan.issue.envelope_name}: {option.vocabulary} - {option.summary}")

        for step in option.steps:
            if isinstance(step, RoutingOverrideStep):
                is_safety_net = groups.get(step.envelope) == SAFETY_NET_GROUP
                override = RoutingOverride(
                    envelope_name=step.envelope,
                    delta_bps=step.delta_bps,
                    remaining_deposits=step.remaining_deposits,
                    reason=f"Decision {token} ({chosen})",
                    created_by=sender or None,
                    allow_protected_reduction=allow_protected_reduction or (allow_safety_net and is_safety_net),
                )
                result.override_ids.append(store.insert_override(override))
                result.summary_lines.append(
                    f"- Stored routing override: {step.envelope} {format_bps(step.delta_bps)} "
                    f"for {step.remaining_deposits} deposit(s)"
                )
            elif isinstance(step, RuleChangeStep):
                if step.envelope not in groups:
                    logger.warning("Decision %s: rule %s no longer exists, change skipped", token, step.envelope)
                    result.summary_lines.append(f"- Skipped rule change for {step.envelope}: rule no longer exists")
                    continue
                store.apply_rule_changes(step.envelope, step.changes)
                result.rule_changes.append(step)
                result.summary_lines.append(
                    f"- Updated rule for {step.envelope}: {', '.join(sorted(step.changes))}"
                )
            elif isinstance(step, TransferStep):
                result.manual_transfers.append(step)
                result.summary_lines.append(
                    f"- Manual transfer: {step.from_envelope} -> {step.to_envelope} "
                    f"{format_currency(step.amount_dollars)}"
                )

    logger.info("Applied decision %s option %s for %s", token, chosen, sender)
    return result
