import math

from envelope_engine.models import DepositPlan, DepositPlanLine
from envelope_engine.visualization import (
    STATUS_COLORS,
    deposit_allocation_chart,
    deposit_plan_frame,
    envelope_health_chart,
    states_frame,
)


def _states(make_state):
    return [
        make_state('Rent', 1000.0, monthly=1500, due_by_day=1, group='Necessities'),
        make_state('Car Repair', 500.0, monthly=300, buffer_months=2, group='Pressing'),
        make_state('Fun', None, monthly=200),
    ]


def _plan():
    return DepositPlan(
        deposit_amount_dollars=2500.0,
        lines=[
            DepositPlanLine('Rent', 6000, 1500.0),
            DepositPlanLine('Fun', 4000, 1000.0),
            DepositPlanLine('Move to ___', 0, 0.0),
        ],
        catch_all_envelope_name='Move to ___',
    )


def test_states_frame_targets_and_shortfalls(make_state):
    df = states_frame(_states(make_state)).set_index('Envelope')

    assert df.loc['Rent', 'Target'] == 1500.0
    assert df.loc['Rent', 'Shortfall'] == 500.0
    assert df.loc['Car Repair', 'Target'] == 600.0
    assert df.loc['Car Repair', 'Shortfall'] == 100.0
    assert math.isnan(df.loc['Fun', 'Shortfall'])


def test_states_frame_empty():
    df = states_frame([])

    assert df.empty
    assert 'Shortfall' in df.columns


def test_envelope_health_chart_skips_unknown_balances(make_state):
    fig = envelope_health_chart(_states(make_state))

    assert [trace.name for trace in fig.data] == ['Balance', 'Buffer floor', 'Required by due']
    assert list(fig.data[0].x) == ['Rent', 'Car Repair']
    assert fig.data[0].marker.color[1] == STATUS_COLORS['buffer_breached']
    assert fig.layout.title.text == 'Envelope health'


def test_envelope_health_chart_without_data():
    assert envelope_health_chart([]).layout.title.text == 'No data to display'


def test_deposit_plan_frame():
    df = deposit_plan_frame(_plan())

    assert list(df['Envelope']) == ['Rent', 'Fun', 'Move to ___']
    assert list(df['Share']) == [0.6, 0.4, 0.0]
    assert list(df['Catch-all']) == [False, False, True]


def test_deposit_allocation_chart_drops_zero_lines():
    fig = deposit_allocation_chart(_plan())

    envelopes = [x for trace in fig.data for x in trace.x]
    assert sorted(envelopes) == ['Fun', 'Rent']
    assert fig.layout.title.text == 'Deposit of $2,500.00'
