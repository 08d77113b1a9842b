from datetime import date

import pytest

from envelope_engine.models import (
    DetectedIssue,
    EnvelopeRule,
    FixPlan,
    FixPlanOption,
    RoutingOverride,
    RoutingOverrideStep,
    RuleChangeStep,
    TransferStep,
    plans_from_json,
    plans_to_json,
    step_from_dict,
)


def _plan():
    issue = DetectedIssue(type='timing_shortfall', envelope_name='Rent', severity='error',
                          shortfall_dollars=90.0, reason='Likely short.')
    return FixPlan(
        issue=issue,
        options=[
            FixPlanOption('A', 'Restore', 'RESTORE', 'Move money.',
                          steps=[TransferStep('Dining', 'Rent', 90.0)]),
            FixPlanOption('B', 'Routing', 'ROUTING', 'Shift deposits.',
                          steps=[RoutingOverrideStep('Rent', 180, 2)], warnings=['Estimate only.']),
            FixPlanOption('C', 'Structural', 'STRUCTURAL', 'Change rule.',
                          steps=[RuleChangeStep('Rent', {'dueAmountDollars': 1590.0})]),
        ],
        recommended_option_id='A',
    )


def test_stored_plans_replay_identically():
    plans = [_plan()]
    assert plans_from_json(plans_to_json(plans)) == plans


def test_plan_json_uses_camel_case_and_step_kinds():
    payload = _plan().to_dict()

    assert payload['recommendedOptionId'] == 'A'
    assert payload['issue']['shortfallDollars'] == 90.0
    assert [step['kind'] for option in payload['options'] for step in option['steps']] == [
        'transfer', 'routing_override', 'rule_change',
    ]
    assert 'warnings' not in payload['options'][0]
    assert payload['options'][1]['warnings'] == ['Estimate only.']


def test_unknown_step_kind_is_rejected():
    with pytest.raises(ValueError):
        step_from_dict({'kind': 'teleport'})


def test_unknown_option_id_is_rejected():
    data = _plan().to_dict()
    data['recommendedOptionId'] = 'Z'
    with pytest.raises(ValueError):
        FixPlan.from_dict(data)


def test_rule_change_ignores_unknown_fields():
    step = RuleChangeStep.from_dict({'envelope': 'Rent', 'changes': {'dueByDay': 3, 'name': 'Hacked'}})
    assert step.changes == {'dueByDay': 3}


def test_plans_json_must_be_a_list():
    with pytest.raises(ValueError):
        plans_from_json('{}')


def test_rule_from_dict_defaults():
    rule = EnvelopeRule.from_dict({'name': 'Fun', 'monthlyBudgetDollars': 200, 'aliases': ['Play', ' ']})

    assert rule.priority_group == 'Other'
    assert rule.protected is False
    assert rule.due_by_day is None
    assert rule.effective_due_amount == 200.0
    assert rule.has_due_day is False
    assert rule.aliases == ['Play']
    assert rule.id


def test_override_activity():
    today = date(2024, 3, 10)

    assert RoutingOverride('Rent', 100).is_active(today)
    assert not RoutingOverride('Rent', 100, remaining_deposits=0).is_active(today)
    assert RoutingOverride('Rent', 100, expires_on=today).is_active(today)
    assert not RoutingOverride('Rent', 100, expires_on=date(2024, 3, 9)).is_active(today)
