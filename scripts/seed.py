#!/usr/bin/env python3
"""Seed envelope rules and routing baselines from JSON files."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from envelope_engine.config import SEED_DIR, configure_logging
from envelope_engine.db import EnvelopeStore
from envelope_engine.models import EnvelopeRule

logger = logging.getLogger('seed')

DEFAULT_RULES = SEED_DIR / 'envelope_rules.example.json'
DEFAULT_BASELINES = SEED_DIR / 'routing_baselines.example.json'


def _read_json(path: Path):
    with path.open('r', encoding='utf-8') as handle:
        return json.load(handle)


def seed(store: EnvelopeStore, rules_path: Path, baselines_path: Path) -> int:
    store.init_db()

    if rules_path.exists():
        rules = [EnvelopeRule.from_dict(item) for item in _read_json(rules_path)]
        for rule in rules:
            store.upsert_rule(rule)
        logger.info("Seeded %d envelope rule(s) from %s", len(rules), rules_path)
    else:
        logger.info("Rules seed file not found at %s (skipping)", rules_path)

    if baselines_path.exists():
        baselines = _read_json(baselines_path)
        for item in baselines:
            store.upsert_baseline(str(item['envelopeName']), int(item['bps']))
        logger.info("Seeded %d routing baseline(s) from %s", len(baselines), baselines_path)
    else:
        logger.info("Baselines seed file not found at %s (skipping)", baselines_path)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description='Seed envelope rules and routing baselines.')
    parser.add_argument('rules', nargs='?', type=Path, default=DEFAULT_RULES, help='Envelope rules JSON')
    parser.add_argument('baselines', nargs='?', type=Path, default=DEFAULT_BASELINES, help='Routing baselines JSON')
    parser.add_argument('--db', type=Path, default=None, help='SQLite file (defaults to ENVELOPE_DB_PATH)')
    args = parser.parse_args()

    configure_logging()
    try:
        return seed(EnvelopeStore(args.db), args.rules, args.baselines)
    except (ValueError, KeyError, json.JSONDecodeError) as exc:
        logger.error("Seeding failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
