from datetime import date

import pytest

from envelope_engine.config import EngineSettings
from envelope_engine.decisions import (
    STATUS_ALREADY_APPLIED,
    STATUS_APPLIED,
    STATUS_NOTHING_PENDING,
    STATUS_UNKNOWN_OPTION,
    apply_decision,
    propose_fix,
    propose_transfer_fix,
)
from envelope_engine.models import (
    SEVERITY_INFO,
    AccountBalance,
    DetectedIssue,
    EnvelopeRule,
    FixPlan,
    FixPlanOption,
    RoutingOverrideStep,
    RuleChangeStep,
    TransferStep,
    plans_to_json,
)

TODAY = date(2024, 3, 5)
SENDER = '+15551234'
SETTINGS = EngineSettings()


@pytest.fixture
def seeded_store(store):
    store.upsert_rule(EnvelopeRule(name='Rent', monthly_budget_dollars=1500, due_by_day=1, due_amount_dollars=1500,
                                   priority_group='Necessities', protected=True))
    store.upsert_rule(EnvelopeRule(name='Dining', monthly_budget_dollars=300, priority_group='Discretionary'))
    return store


def _accounts(rent=0.0, dining=300.0):
    return [
        AccountBalance(name='Rent', balance_dollars=rent),
        AccountBalance(name='Dining', balance_dollars=dining),
        AccountBalance(name='Checking', balance_dollars=5000.0, type='Checking'),
    ]


def test_propose_fix_stores_plans_and_snapshots(seeded_store):
    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    assert proposal.token is not None
    assert [issue.envelope_name for issue in proposal.issues] == ['Rent']
    assert proposal.plans[0].recommended_option_id == 'B'
    assert seeded_store.get_decision(SENDER, proposal.token)['chosen_option'] is None
    assert seeded_store.snapshots_for_date(TODAY) == {'Rent': 0.0, 'Dining': 300.0}


def test_due_date_snapshot_clears_overdue(seeded_store):
    seeded_store.upsert_snapshots(date(2024, 3, 1), {'Rent': 1500.0})

    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    assert proposal.issues == []
    assert proposal.token is None
    assert seeded_store.get_pending_decision(SENDER) is None


def test_scope_without_matching_issue_stores_nothing(seeded_store):
    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER, scope_envelope_names=['Dining'])

    assert proposal.plans == []
    assert proposal.token is None


def test_apply_routing_option_stores_overrides(seeded_store):
    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    result = apply_decision(seeded_store, SENDER, 'b')

    assert result.status == STATUS_APPLIED
    assert result.applied
    assert result.token == proposal.token
    assert len(result.override_ids) == 2
    overrides = {o.envelope_name: o for o in seeded_store.list_active_overrides(TODAY)}
    assert overrides['Rent'].delta_bps == 3000
    assert overrides['Dining'].delta_bps == -3000
    assert overrides['Rent'].remaining_deposits == 2
    assert overrides['Rent'].reason == f"Decision {proposal.token} (B)"
    assert overrides['Rent'].created_by == SENDER
    assert not overrides['Dining'].allow_protected_reduction


def test_decision_applies_exactly_once(seeded_store):
    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    assert apply_decision(seeded_store, SENDER, 'B', token=proposal.token).applied
    again = apply_decision(seeded_store, SENDER, 'A', token=proposal.token)

    assert again.status == STATUS_ALREADY_APPLIED
    assert again.chosen_option == 'B'
    assert len(seeded_store.list_active_overrides(TODAY)) == 2
    assert apply_decision(seeded_store, SENDER, 'B').status == STATUS_NOTHING_PENDING


def test_apply_structural_option_updates_rule(seeded_store):
    propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    result = apply_decision(seeded_store, SENDER, 'C')

    assert len(result.rule_changes) == 1
    assert seeded_store.get_rule('Rent').due_amount_dollars == 3000.0
    assert seeded_store.list_active_overrides(TODAY) == []


def test_apply_restore_option_only_reports_transfers(seeded_store):
    propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    result = apply_decision(seeded_store, SENDER, 'A')

    assert result.manual_transfers == [TransferStep(from_envelope='Dining', to_envelope='Rent', amount_dollars=300.0)]
    assert result.override_ids == []
    assert any('Manual transfer: Dining -> Rent $300.00' in line for line in result.summary_lines)


def test_unknown_option_leaves_decision_pending(seeded_store):
    proposal = propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    assert apply_decision(seeded_store, SENDER, 'D').status == STATUS_UNKNOWN_OPTION
    assert seeded_store.get_pending_decision(SENDER)['token'] == proposal.token


def test_other_sender_has_nothing_pending(seeded_store):
    propose_fix(seeded_store, _accounts(), TODAY, SETTINGS, sender=SENDER)

    assert apply_decision(seeded_store, 'someone-else', 'A').status == STATUS_NOTHING_PENDING


def test_safety_net_allow_marks_safety_net_overrides(store):
    store.upsert_rule(EnvelopeRule(name='Safety Net', monthly_budget_dollars=250, priority_group='SafetyNet',
                                   protected=True))
    issue = DetectedIssue(type='timing_shortfall', envelope_name='Rent', severity='warn',
                          shortfall_dollars=100.0, reason='Needs funding.')
    option_b = FixPlanOption(
        option_id='B',
        label='Routing',
        vocabulary='ROUTING',
        summary='Shift deposits.',
        steps=[
            RoutingOverrideStep(envelope='Rent', delta_bps=400, remaining_deposits=1),
            RoutingOverrideStep(envelope='Safety Net', delta_bps=-400, remaining_deposits=1),
        ],
    )
    plan = FixPlan(issue=issue, options=[option_b], recommended_option_id='B')
    store.insert_decision('feedbeef', SENDER, plans_to_json([plan]))

    result = apply_decision(store, SENDER, 'B', allow_safety_net=True)

    assert result.applied
    overrides = {o.envelope_name: o for o in store.list_active_overrides(TODAY)}
    assert overrides['Safety Net'].allow_protected_reduction
    assert not overrides['Rent'].allow_protected_reduction


def test_propose_transfer_fix(seeded_store):
    proposal = propose_transfer_fix(seeded_store, _accounts(rent=1500.0), 100.0, 'Dining', 'Rent', SETTINGS,
                                    sender=SENDER)

    assert proposal.token is not None
    assert proposal.issues[0].severity == SEVERITY_INFO
    assert proposal.issues[0].envelope_name == 'Dining → Rent'
    assert seeded_store.get_pending_decision(SENDER)['token'] == proposal.token


def test_rule_change_for_vanished_rule_is_skipped(store):
    store.upsert_rule(EnvelopeRule(name='Fun', monthly_budget_dollars=100, priority_group='Discretionary'))
    issue = DetectedIssue(type='overspend', envelope_name='Old Name', severity='warn',
                          shortfall_dollars=50.0, reason='Below floor by $50.00.')
    option_c = FixPlanOption(
        option_id='C',
        label='Structural',
        vocabulary='STRUCTURAL',
        summary='Raise the budget.',
        steps=[
            RoutingOverrideStep(envelope='Fun', delta_bps=-100, remaining_deposits=1),
            RuleChangeStep(envelope='Old Name', changes={'monthlyBudgetDollars': 150.0}),
        ],
    )
    plan = FixPlan(issue=issue, options=[option_c], recommended_option_id='C')
    store.insert_decision('c0ffee00', SENDER, plans_to_json([plan]))

    result = apply_decision(store, SENDER, 'C')

    assert result.applied
    assert result.rule_changes == []
    assert len(result.override_ids) == 1
    assert '- Skipped rule change for Old Name: rule no longer exists' in result.summary_lines
    assert store.get_rule('Old Name') is None
