import io
import json

import pytest

from envelope_engine.budget_import import (
    baselines_from_budgets,
    load_rule_overrides,
    parse_dollars,
    read_budget_csv,
    sync_budget,
)
from envelope_engine.models import EnvelopeRule

CATCH_ALL = 'Move to ___'


def _write_csv(tmp_path, text, name='budget.csv'):
    path = tmp_path / name
    path.write_text(text, encoding='utf-8')
    return path


@pytest.mark.parametrize(
    'raw, expected',
    [
        ('$1,500.00', 1500.0),
        ('(50.00)', -50.0),
        (' 800 ', 800.0),
        (12, 12.0),
        ('abc', None),
        ('', None),
        (None, None),
    ],
)
def test_parse_dollars(raw, expected):
    assert parse_dollars(raw) == expected


def test_read_budget_csv_sums_duplicates_and_skips_bad_rows(tmp_path):
    path = _write_csv(
        tmp_path,
        'envelope,BUDGET\n'
        'Rent,"$1,500.00"\n'
        'Groceries,800\n'
        'Groceries,200\n'
        ',100\n'
        'Bad,abc\n',
    )

    assert read_budget_csv(path) == {'Rent': 1500.0, 'Groceries': 1000.0}


def test_read_budget_csv_accepts_buffer():
    assert read_budget_csv(io.StringIO('Envelope,Budget\nFun,200\n')) == {'Fun': 200.0}


def test_read_budget_csv_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_budget_csv(tmp_path / 'missing.csv')


def test_read_budget_csv_missing_headers(tmp_path):
    with pytest.raises(ValueError):
        read_budget_csv(_write_csv(tmp_path, 'Name,Amount\nRent,1500\n'))


def test_read_budget_csv_without_positive_total(tmp_path):
    with pytest.raises(ValueError):
        read_budget_csv(_write_csv(tmp_path, 'Envelope,Budget\nRent,0\n'))


def test_baselines_sum_to_full_deposit():
    assert baselines_from_budgets({'Rent': 1500, 'Groceries': 1000}, CATCH_ALL) == {
        'Rent': 6000,
        'Groceries': 4000,
        CATCH_ALL: 0,
    }
    thirds = baselines_from_budgets({'A': 1, 'B': 1, 'C': 1}, CATCH_ALL)
    assert thirds == {'A': 3333, 'B': 3333, 'C': 3333, CATCH_ALL: 1}


def test_catch_all_with_its_own_budget_absorbs_remainder():
    bps = baselines_from_budgets({'A': 1, 'B': 1, CATCH_ALL: 1}, CATCH_ALL)

    assert bps == {'A': 3333, 'B': 3333, CATCH_ALL: 3334}


def test_load_rule_overrides(tmp_path):
    path = tmp_path / 'overrides.json'
    path.write_text(json.dumps({'Rent': {'dueByDay': 1}}), encoding='utf-8')

    assert load_rule_overrides(path) == {'Rent': {'dueByDay': 1}}
    assert load_rule_overrides(tmp_path / 'missing.json') == {}


def test_sync_budget_preserves_rule_identity(store, tmp_path):
    existing = store.upsert_rule(
        EnvelopeRule(name='Rent', monthly_budget_dollars=1400, priority_group='Necessities',
                     protected=True, aliases=['Landlord'])
    )
    path = _write_csv(tmp_path, 'Envelope,Budget\nRent,1500\nGroceries,500\n')

    summary = sync_budget(store, path, rule_overrides={'Rent': {'dueByDay': 1}}, catch_all_envelope_name=CATCH_ALL)

    assert summary.envelope_count == 2
    assert summary.total_budget_dollars == 2000.0
    assert summary.previous_total_dollars == 1400.0
    assert summary.total_bps == 10000
    assert summary.catch_all_remainder_bps == 0
    assert summary.budget_diffs == ['Groceries: (new) -> $500.00', 'Rent: $1,400.00 -> $1,500.00']

    rent = store.get_rule('Rent')
    assert rent.id == existing.id
    assert rent.priority_group == 'Necessities'
    assert rent.protected is True
    assert rent.aliases == ['Landlord']
    assert rent.due_by_day == 1
    assert rent.due_amount_dollars == 1500.0
    assert store.get_rule('Groceries').due_amount_dollars == 500.0

    assert {b.envelope_name: b.bps for b in store.list_baselines()} == {
        'Rent': 7500,
        'Groceries': 2500,
        CATCH_ALL: 0,
    }
