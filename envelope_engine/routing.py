"""Split an incoming deposit across envelopes in basis points.

The split is built in phases on an :class:`AllocationTable`:

1. seed each envelope with its baseline bps,
2. apply active overrides in creation order,
3. clamp any change larger than the per-deposit dollar cap,
4. normalise the total to 10,000 bps,
5. convert to cents, giving the catch-all envelope the penny remainder.

Each phase can be inspected with :meth:`AllocationTable.to_frame`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .models import DepositPlan, DepositPlanLine, EnvelopeRule, RoutingBaseline, RoutingOverride
from .money import BPS_TOTAL, cents_from_dollars, clamp_int, dollars_from_cents, round_int
from .policy import group_rank

logger = logging.getLogger(__name__)

OVERFLOW_WARNING = (
    "Unable to resolve bps overflow without touching protected envelopes; returning best-effort plan."
)


def active_overrides(overrides: Iterable[RoutingOverride], today: date) -> List[RoutingOverride]:
    """Overrides still counting down and not yet expired, oldest first."""
    return sorted((o for o in overrides if o.is_active(today)), key=lambda o: o.created_at)


@dataclass
class AllocationRow:
    envelope_name: str
    baseline_bps: int
    bps: int
    protected: bool = False
    rank: int = 0
    cents: Optional[int] = None


class AllocationTable:
    """Per-envelope bps working state for one deposit."""

    def __init__(self, deposit_cents: int, catch_all_envelope_name: str):
        self.deposit_cents = deposit_cents
        self.catch_all = catch_all_envelope_name
        self.rows: Dict[str, AllocationRow] = {}
        self.warnings: List[str] = []

    @classmethod
    def seed(
        cls,
        deposit_cents: int,
        baselines: Sequence[RoutingBaseline],
        overrides: Sequence[RoutingOverride],
        rules: Sequence[EnvelopeRule],
        catch_all_envelope_name: str,
    ) -> 'AllocationTable':
        table = cls(deposit_cents, catch_all_envelope_name)
        baseline_by_name = {b.envelope_name: clamp_int(b.bps, 0, BPS_TOTAL) for b in baselines}
        rule_by_name = {r.name: r for r in rules}

        names = [catch_all_envelope_name]
        names.extend(b.envelope_name for b in baselines)
        names.extend(o.envelope_name for o in overrides)
        for name in names:
            if name in table.rows:
                continue
            rule = rule_by_name.get(name)
            baseline = baseline_by_name.get(name, 0)
            table.rows[name] = AllocationRow(
                envelope_name=name,
                baseline_bps=baseline,
                bps=baseline,
                protected=bool(rule and rule.protected),
                rank=group_rank(rule.priority_group if rule else 'Other'),
            )
        return table

    @property
    def total_bps(self) -> int:
        return sum(row.bps for row in self.rows.values())

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)

    def apply_overrides(self, overrides: Sequence[RoutingOverride]) -> 'AllocationTable':
        """Add each override's delta; protected envelopes never drop below baseline without consent."""
        for override in sorted(overrides, key=lambda o: o.created_at):
            row = self.rows[override.envelope_name]
            proposed = clamp_int(row.bps + override.delta_bps, 0, BPS_TOTAL)
            if row.protected and not override.allow_protected_reduction and proposed < row.baseline_bps:
                proposed = row.baseline_bps
                self._warn(f"Protected envelope {row.envelope_name} not reduced (override blocked).")
            row.bps = proposed
        return self

    def clamp_adjustments(self, max_adjustment_per_deposit_dollars: float) -> 'AllocationTable':
        """Limit each envelope's change from baseline to the per-deposit dollar cap."""
        cap_cents = max(0, cents_from_dollars(max_adjustment_per_deposit_dollars))
        if cap_cents <= 0:
            return self

        for row in self.rows.values():
            delta_bps = row.bps - row.baseline_bps
            if delta_bps == 0:
                continue
            delta_cents = round_int(self.deposit_cents * delta_bps / BPS_TOTAL)
            if abs(delta_cents) <= cap_cents:
                continue

            capped_cents = cap_cents if delta_cents > 0 else -cap_cents
            capped_bps = clamp_int(round_int(capped_cents * BPS_TOTAL / self.deposit_cents), -BPS_TOTAL, BPS_TOTAL)
            clamped = clamp_int(row.baseline_bps + capped_bps, 0, BPS_TOTAL)
            if row.protected and clamped < row.baseline_bps:
                clamped = row.baseline_bps
            row.bps = clamped
            self._warn(f"Clamped adjustment for {row.envelope_name} to stay within max per-deposit change.")
        return self

    def normalize(self) -> 'AllocationTable':
        """Bring the total to exactly 10,000 bps.

        A shortfall goes to the catch-all.  Overflow comes out of the catch-all
        first, then out of unprotected envelopes by (rank, name).
        """
        catch_all = self.rows[self.catch_all]
        total = self.total_bps
        if total < BPS_TOTAL:
            catch_all.bps += BPS_TOTAL - total
            return self
        if total == BPS_TOTAL:
            return self

        overflow = total - BPS_TOTAL
        take = min(catch_all.bps, overflow)
        catch_all.bps -= take
        overflow -= take

        candidates = sorted(
            (row for row in self.rows.values() if row.envelope_name != self.catch_all and not row.protected),
            key=lambda row: (row.rank, row.envelope_name),
        )
        for row in candidates:
            if overflow <= 0:
                break
            take = min(row.bps, overflow)
            row.bps -= take
            overflow -= take

        if overflow > 0:
            self._warn(OVERFLOW_WARNING)
        return self

    def to_cents(self) -> 'AllocationTable':
        """Round each envelope's share to cents; the catch-all takes the remainder."""
        allocated = 0
        for name in sorted(self.rows):
            if name == self.catch_all:
                continue
            row = self.rows[name]
            row.bps = clamp_int(row.bps, 0, BPS_TOTAL)
            row.cents = round_int(self.deposit_cents * row.bps / BPS_TOTAL)
            allocated += row.cents
        catch_all = self.rows[self.catch_all]
        catch_all.bps = clamp_int(catch_all.bps, 0, BPS_TOTAL)
        catch_all.cents = self.deposit_cents - allocated
        return self

    def lines(self) -> List[DepositPlanLine]:
        ordered = [name for name in sorted(self.rows) if name != self.catch_all] + [self.catch_all]
        return [
            DepositPlanLine(
                envelope_name=name,
                bps=self.rows[name].bps,
                amount_dollars=dollars_from_cents(self.rows[name].cents or 0),
            )
            for name in ordered
        ]

    def to_frame(self) -> pd.DataFrame:
        """Current table as a DataFrame, one row per envelope."""
        columns = ['envelope_name', 'baseline_bps', 'bps', 'delta_bps', 'protected', 'rank', 'cents']
        records = [
            {
                'envelope_name': row.envelope_name,
                'baseline_bps': row.baseline_bps,
                'bps': row.bps,
                'delta_bps': row.bps - row.baseline_bps,
                'protected': row.protected,
                'rank': row.rank,
                'cents': row.cents,
            }
            for row in self.rows.values()
        ]
        return pd.DataFrame.from_records(records, columns=columns)


def compute_deposit_plan(
    deposit_amount_dollars: float,
    baselines: Sequence[RoutingBaseline],
    overrides: Sequence[RoutingOverride],
    rules: Sequence[EnvelopeRule],
    catch_all_envelope_name: str,
    max_adjustment_per_deposit_dollars: float,
) -> DepositPlan:
    """Allocate a deposit across envelopes.

    Args:
        deposit_amount_dollars: Deposit size; must round to at least one cent.
        baselines: Standing bps per envelope.
        overrides: Already-filtered active overrides (see :func:`active_overrides`).
        rules: Envelope rules, used for protected flags and priority groups.
        catch_all_envelope_name: Envelope absorbing remainders.
        max_adjustment_per_deposit_dollars: Cap on any envelope's change from
            baseline for this deposit; ``0`` disables the cap.

    Returns:
        A DepositPlan whose line amounts sum exactly to the deposit.

    Raises:
        ValueError: If the deposit is not positive.
    """
    deposit_cents = cents_from_dollars(deposit_amount_dollars)
    if deposit_cents <= 0:
        raise ValueError("deposit_amount_dollars must be > 0")

    table = (
        AllocationTable.seed(deposit_cents, baselines, overrides, rules, catch_all_envelope_name)
        .apply_overrides(overrides)
        .clamp_adjustments(max_adjustment_per_deposit_dollars)
        .normalize()
        .to_cents()
    )
    logger.debug("Deposit of %d cents split across %d envelope(s)", deposit_cents, len(table.rows))
    return DepositPlan(
        deposit_amount_dollars=dollars_from_cents(deposit_cents),
        lines=table.lines(),
        catch_all_envelope_name=catch_all_envelope_name,
        warnings=list(table.warnings),
    )
