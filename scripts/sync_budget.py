#!/usr/bin/env python3
"""Rewrite envelope rules and routing baselines from a budget CSV."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from envelope_engine.budget_import import RULE_OVERRIDES_FILE, load_rule_overrides, sync_budget
from envelope_engine.config import configure_logging, load_settings
from envelope_engine.db import EnvelopeStore
from envelope_engine.formatting import format_currency

logger = logging.getLogger('sync_budget')


def main() -> int:
    parser = argparse.ArgumentParser(description='Sync envelope budgets from an Envelope/Budget CSV.')
    parser.add_argument('csv', type=Path, help='Budget CSV with Envelope and Budget columns')
    parser.add_argument('--overrides', type=Path, default=RULE_OVERRIDES_FILE, help='Per-envelope rule overrides JSON')
    parser.add_argument('--db', type=Path, default=None, help='SQLite file (defaults to ENVELOPE_DB_PATH)')
    args = parser.parse_args()

    configure_logging()
    settings = load_settings()
    store = EnvelopeStore(args.db)
    store.init_db()

    try:
        overrides = load_rule_overrides(args.overrides)
        summary = sync_budget(
            store,
            args.csv,
            rule_overrides=overrides,
            catch_all_envelope_name=settings.catch_all_envelope_name,
        )
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Budget sync failed: %s", exc)
        return 1

    print("Parsed totals:")
    print(f"- envelopes imported: {summary.envelope_count}")
    print(
        f"- total budget: {format_currency(summary.previous_total_dollars)} -> "
        f"{format_currency(summary.total_budget_dollars)}"
    )
    print("Envelope budget diffs:")
    for diff in summary.budget_diffs or ["(no changes)"]:
        print(f"- {diff}")
    print("Routing bps summary:")
    print(f"- sum bps: {summary.total_bps}")
    print(f"- catch-all remainder applied: {summary.catch_all_remainder_bps} to {settings.catch_all_envelope_name}")
    top = sorted(summary.baselines.items(), key=lambda item: item[1], reverse=True)[:10]
    print(f"- top allocations: {', '.join(f'{name}: {bps}' for name, bps in top)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
