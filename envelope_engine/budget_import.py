"""Import monthly envelope budgets from a CSV export.

The CSV needs ``Envelope`` and ``Budget`` columns (any case).  Budgets become
rule monthly budgets and, proportionally, routing baselines whose rounding
remainder lands on the catch-all envelope so the baselines total 10,000 bps.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .config import DEFAULT_CATCH_ALL_ENVELOPE, SEED_DIR
from .db import EnvelopeStore
from .formatting import format_currency
from .models import EnvelopeRule
from .money import BPS_TOTAL, round2, round_int

logger = logging.getLogger(__name__)

RULE_OVERRIDES_FILE = SEED_DIR / 'envelope_overrides.json'


@dataclass
class SyncSummary:
    envelope_count: int
    total_budget_dollars: float
    previous_total_dollars: float
    baselines: Dict[str, int]
    catch_all_remainder_bps: int
    budget_diffs: List[str] = field(default_factory=list)

    @property
    def total_bps(self) -> int:
        return sum(self.baselines.values())


def parse_dollars(value: Any) -> Optional[float]:
    """Parse ``$1,234.50`` or ``(12.00)`` style amounts; ``None`` when unparsable."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)
    text = str(value).strip()
    if not text:
        return None
    negative = text.startswith('(') and text.endswith(')')
    cleaned = text.replace('(', '').replace(')', '').replace('$', '').replace(',', '')
    number = pd.to_numeric(pd.Series([cleaned]), errors='coerce').iloc[0]
    if pd.isna(number):
        return None
    return -float(number) if negative else float(number)


def _find_column(df: pd.DataFrame, name: str) -> Optional[str]:
    for column in df.columns:
        if str(column).strip().lower() == name.lower():
            return column
    return None


def read_budget_csv(path_or_buffer) -> Dict[str, float]:
    """Envelope name -> monthly budget, duplicates summed, in file order.

    Raises:
        FileNotFoundError: If a path is given and does not exist.
        ValueError: If the headers are missing or no usable budget remains.
    """
    if not hasattr(path_or_buffer, 'read'):
        path = Path(path_or_buffer)
        if not path.exists():
            raise FileNotFoundError(f"Budget CSV not found: {path}")
        path_or_buffer = path

    df = pd.read_csv(path_or_buffer, dtype=str, keep_default_na=False, skipinitialspace=True)
    envelope_col = _find_column(df, 'Envelope')
    budget_col = _find_column(df, 'Budget')
    if envelope_col is None or budget_col is None:
        raise ValueError("Budget CSV missing Envelope/Budget headers")

    frame = pd.DataFrame({
        'envelope': df[envelope_col].astype(str).str.strip(),
        'budget': df[budget_col].map(parse_dollars),
    })
    skipped = frame[(frame['envelope'] != '') & frame['budget'].isna()]
    for name in skipped['envelope']:
        logger.warning("Skipping envelope %s with unparsable budget", name)
    frame = frame[(frame['envelope'] != '') & frame['budget'].notna()]

    budgets = frame.groupby('envelope', sort=False)['budget'].sum()
    if budgets.empty or budgets.sum() <= 0:
        raise ValueError("No valid envelope budgets found")
    return {str(name): float(amount) for name, amount in budgets.items()}


def _proportional_bps(budgets: Mapping[str, float], catch_all_envelope_name: str) -> Tuple[Dict[str, int], int]:
    total = sum(budgets.values())
    if total <= 0:
        raise ValueError("Total budget must be positive")
    bps = {name: round_int(amount / total * BPS_TOTAL) for name, amount in budgets.items()}
    remainder = BPS_TOTAL - sum(bps.values())
    bps[catch_all_envelope_name] = bps.get(catch_all_envelope_name, 0) + remainder
    return bps, remainder


def baselines_from_budgets(
    budgets: Mapping[str, float],
    catch_all_envelope_name: str = DEFAULT_CATCH_ALL_ENVELOPE,
) -> Dict[str, int]:
    """Proportional bps per envelope; the rounding remainder goes to the catch-all."""
    return _proportional_bps(budgets, catch_all_envelope_name)[0]


def load_rule_overrides(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """Per-envelope ``dueByDay`` / ``bufferMonths`` / ``dueAmountDollars`` overrides."""
    target = path or RULE_OVERRIDES_FILE
    if not target.exists():
        return {}
    with target.open('r', encoding='utf-8') as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Rule overrides must be a JSON object: {target}")
    return {str(name): dict(values or {}) for name, values in data.items()}


def sync_budget(
    store: EnvelopeStore,
    path_or_buffer,
    rule_overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
    catch_all_envelope_name: str = DEFAULT_CATCH_ALL_ENVELOPE,
) -> SyncSummary:
    """Rewrite rules and routing baselines from a budget CSV.

    Existing rules keep their id, priority group and protected flag.  Due
    day, buffer months and due amount come from ``rule_overrides`` (due
    amount defaulting to the budget).
    """
    budgets = read_budget_csv(path_or_buffer)
    overrides = rule_overrides or {}
    existing = {rule.name: rule for rule in store.list_rules()}

    diffs: List[str] = []
    previous_total = 0.0
    for name, budget in budgets.items():
        current = existing.get(name)
        override = overrides.get(name, {})
        if current is not None:
            previous_total += current.monthly_budget_dollars

        rule = EnvelopeRule(
            name=name,
            monthly_budget_dollars=round2(budget),
            due_by_day=override.get('dueByDay'),
            due_amount_dollars=override.get('dueAmountDollars', round2(budget)),
            buffer_months=override.get('bufferMonths', 0),
            priority_group=current.priority_group if current else 'Other',
            protected=current.protected if current else False,
            aliases=list(current.aliases) if current else [],
        )
        store.upsert_rule(rule)

        if current is None or current.monthly_budget_dollars != rule.monthly_budget_dollars:
            old = format_currency(current.monthly_budget_dollars) if current else '(new)'
            diffs.append(f"{name}: {old} -> {format_currency(rule.monthly_budget_dollars)}")

    baselines, remainder = _proportional_bps(budgets, catch_all_envelope_name)
    for name, bps in baselines.items():
        store.upsert_baseline(name, bps)

    summary = SyncSummary(
        envelope_count=len(budgets),
        total_budget_dollars=round2(sum(budgets.values())),
        previous_total_dollars=round2(previous_total),
        baselines=baselines,
        catch_all_remainder_bps=remainder,
        budget_diffs=sorted(diffs),
    )
    logger.info(
        "Imported %d envelope budget(s) totalling %s",
        summary.envelope_count,
        format_currency(summary.total_budget_dollars),
    )
    return summary
