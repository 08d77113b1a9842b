import dataclasses

from envelope_engine.models import STATUS_DUE_SOON
from envelope_engine.policy import (
    BORROW_ORDER,
    can_borrow_from_donor,
    group_rank,
    is_protected_reduction_allowed,
    sort_by_rank,
)


def test_borrow_order_is_fixed():
    assert BORROW_ORDER == (
        'Discretionary', 'Pressing', 'Necessities', 'Kiddos', 'Savings', 'SafetyNet', 'Other',
    )
    assert group_rank('Discretionary') == 0
    assert group_rank('Other') == 6
    assert group_rank('Mystery') == 7


def test_sort_by_rank_is_stable(make_state):
    states = [
        make_state('Zoo', 10.0, group='Other'),
        make_state('Fun', 10.0, group='Discretionary'),
        make_state('Dining', 10.0, group='Discretionary'),
        make_state('Car', 10.0, group='Pressing'),
    ]
    assert [s.name for s in sort_by_rank(states)] == ['Fun', 'Dining', 'Car', 'Zoo']


def test_plain_donor_with_surplus_is_eligible(make_state):
    assert can_borrow_from_donor(make_state('Fun', 50.0, group='Discretionary')).ok


def test_donor_rejections(make_state):
    assert can_borrow_from_donor(make_state('Fun', None)).reason == 'Missing balance.'
    assert not can_borrow_from_donor(make_state('Fun', 0.0)).ok
    assert not can_borrow_from_donor(make_state('Fun', 100.0, monthly=100, buffer_months=2)).ok

    due = dataclasses.replace(make_state('Rent', 500.0), status=STATUS_DUE_SOON)
    assert can_borrow_from_donor(due).reason == 'Donor has a due-date requirement.'


def test_safety_net_group_needs_explicit_allow(make_state):
    donor = make_state('Emergency', 500.0, group='SafetyNet')

    assert not can_borrow_from_donor(donor).ok
    assert can_borrow_from_donor(donor, allow_safety_net=True).ok


def test_safety_net_allow_unlocks_protected_safety_net_group(make_state):
    donor = make_state('Emergency', 500.0, group='SafetyNet', protected=True)

    assert can_borrow_from_donor(donor, allow_safety_net=True).ok


def test_safety_net_allow_does_not_unlock_other_protected_groups(make_state):
    donor = make_state('Rent', 500.0, group='Necessities', protected=True)

    assert not can_borrow_from_donor(donor, allow_safety_net=True).ok
    assert can_borrow_from_donor(donor, allow_protected_reduction=True).ok


def test_routing_reduction_exception_is_limited_to_the_safety_net_envelope(make_state):
    named = make_state('Safety Net', 500.0, group='SafetyNet', protected=True)
    other = make_state('Emergency', 500.0, group='SafetyNet', protected=True)

    assert is_protected_reduction_allowed(named, allow_safety_net=True)
    assert not is_protected_reduction_allowed(other, allow_safety_net=True)
    assert is_protected_reduction_allowed(other, allow_protected_reduction=True)
    assert is_protected_reduction_allowed(make_state('Fun', 5.0))
