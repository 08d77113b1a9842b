from datetime import date

import pytest

from envelope_engine.issues import (
    detect_issues,
    due_date_this_month,
    next_due_date,
    snapshot_dates_needed,
)
from envelope_engine.models import (
    ISSUE_OVERSPEND,
    ISSUE_TIMING_SHORTFALL,
    SEVERITY_ERROR,
    SEVERITY_WARN,
    STATUS_BUFFER_BREACHED,
    STATUS_DUE_SOON,
    STATUS_OK,
    STATUS_OVERDUE,
)


@pytest.fixture
def rent(make_state):
    def _rent(balance):
        return make_state('Rent', balance, monthly=1500, group='Necessities', protected=True,
                          due_by_day=1, due_amount=1500)
    return _rent


def test_rent_unpaid_on_day_five_is_overdue(rent):
    states, issues = detect_issues([rent(0.0)], date(2024, 3, 5), 7)

    assert states[0].status == STATUS_OVERDUE
    assert states[0].status_reason == 'Likely short $1,500.00 for due date (no snapshot for 2024-03-01).'
    assert len(issues) == 1
    issue = issues[0]
    assert issue.type == ISSUE_TIMING_SHORTFALL
    assert issue.severity == SEVERITY_ERROR
    assert issue.shortfall_dollars == 1500.0


def test_due_date_snapshot_is_compared_instead_of_current_balance(rent):
    states, issues = detect_issues([rent(0.0)], date(2024, 3, 5), 7, {'Rent': 1000.0})

    assert states[0].status == STATUS_OVERDUE
    assert states[0].status_reason == 'Was short $500.00 on due date (2024-03-01).'
    # shortfall is still measured against today's balance
    assert issues[0].shortfall_dollars == 1500.0


def test_funded_snapshot_clears_overdue(rent):
    states, issues = detect_issues([rent(0.0)], date(2024, 3, 5), 7, {'Rent': 1500.0})

    assert states[0].status == STATUS_OK
    assert issues == []


def test_not_overdue_on_the_due_day_itself(rent):
    states, issues = detect_issues([rent(0.0)], date(2024, 3, 1), 7)

    assert states[0].status == STATUS_DUE_SOON
    assert states[0].status_reason == 'Needs $1,500.00 funded within 0 day(s).'
    assert issues[0].severity == SEVERITY_WARN


def test_due_soon_looks_into_next_month(rent):
    states, issues = detect_issues([rent(1000.0)], date(2024, 3, 28), 7, {'Rent': 1500.0})

    assert states[0].status == STATUS_DUE_SOON
    assert states[0].status_reason == 'Needs $500.00 funded within 4 day(s).'
    assert issues[0].shortfall_dollars == 500.0


def test_overdue_takes_precedence_over_next_due_date(rent):
    states, issues = detect_issues([rent(1000.0)], date(2024, 3, 28), 7)

    assert states[0].status == STATUS_OVERDUE
    assert issues[0].severity == SEVERITY_ERROR


def test_due_outside_window_is_ok(rent):
    states, issues = detect_issues([rent(1000.0)], date(2024, 3, 20), 7, {'Rent': 1500.0})

    assert states[0].status == STATUS_OK
    assert issues == []


def test_buffer_breach_emits_overspend(make_state):
    state = make_state('Car Repair', 500.0, monthly=300, group='Pressing', buffer_months=2)
    states, issues = detect_issues([state], date(2024, 3, 5), 7)

    assert states[0].status == STATUS_BUFFER_BREACHED
    assert states[0].status_reason == 'Below floor by $100.00.'
    assert issues[0].type == ISSUE_OVERSPEND
    assert issues[0].severity == SEVERITY_WARN
    assert issues[0].shortfall_dollars == 100.0


def test_unknown_balance_is_never_flagged(rent):
    states, issues = detect_issues([rent(None)], date(2024, 3, 5), 7)

    assert states[0].status == STATUS_OK
    assert issues == []


def test_input_states_are_not_modified(rent):
    before = rent(0.0)
    states, _ = detect_issues([before], date(2024, 3, 5), 7)

    assert states[0] is not before
    assert before.status == STATUS_OK


def test_shortfalls_are_never_negative(make_state):
    states = [
        make_state('Rent', 2000.0, monthly=1500, due_by_day=1),
        make_state('Fun', 10.0, monthly=200, buffer_months=1),
        make_state('Dining', 400.0, monthly=100),
    ]
    _, issues = detect_issues(states, date(2024, 3, 28), 7)

    assert issues
    assert all(issue.shortfall_dollars >= 0 for issue in issues)


@pytest.mark.parametrize(
    'today, due_by_day, expected_date, expected_days',
    [
        (date(2024, 2, 10), 31, date(2024, 2, 29), 19),
        (date(2024, 1, 31), 30, date(2024, 2, 29), 29),
        (date(2024, 12, 20), 5, date(2025, 1, 5), 16),
        (date(2024, 4, 15), 15, date(2024, 4, 15), 0),
    ],
)
def test_next_due_date_clamps_to_month_length(today, due_by_day, expected_date, expected_days):
    assert next_due_date(today, due_by_day) == (expected_date, expected_days)


def test_due_date_this_month_clamps():
    assert due_date_this_month(date(2023, 2, 3), 31) == date(2023, 2, 28)


def test_snapshot_dates_only_for_passed_due_days(make_state):
    states = [
        make_state('Rent', 0.0, monthly=1500, due_by_day=1),
        make_state('Insurance', 0.0, monthly=100, due_by_day=20),
        make_state('Fun', 0.0, monthly=200),
    ]
    assert snapshot_dates_needed(states, date(2024, 3, 5)) == {'Rent': date(2024, 3, 1)}
