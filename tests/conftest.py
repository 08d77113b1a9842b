from __future__ import annotations

import pytest

from envelope_engine.db import EnvelopeStore
from envelope_engine.floors import compute_envelope_state
from envelope_engine.models import EnvelopeRule


@pytest.fixture
def store(tmp_path):
    envelope_store = EnvelopeStore(tmp_path / 'envelopes.db')
    envelope_store.init_db()
    return envelope_store


@pytest.fixture
def make_state():
    """Build an EnvelopeState from rule fields and a balance."""

    def _make(name, balance, monthly=0.0, group='Other', protected=False, due_by_day=None,
              due_amount=None, buffer_months=0):
        rule = EnvelopeRule(
            name=name,
            monthly_budget_dollars=monthly,
            due_by_day=due_by_day,
            due_amount_dollars=due_amount,
            buffer_months=buffer_months,
            priority_group=group,
            protected=protected,
        )
        return compute_envelope_state(rule, balance)

    return _make
