"""SQLite persistence for rules, routing, deposit events, snapshots and decisions."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import pandas as pd

from .config import DB_PATH, ensure_data_directories
from .models import (
    RULE_CHANGE_FIELDS,
    EnvelopeRule,
    RoutingBaseline,
    RoutingOverride,
    utc_now_iso,
)
from .money import BPS_TOTAL, clamp_int

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL
);
"""

# (version, name, statements) applied in order, each at most once
MIGRATIONS = (
    (
        1,
        'init_envelope_tables',
        (
            """
            CREATE TABLE IF NOT EXISTS envelope_rules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                monthly_budget_dollars REAL NOT NULL,
                due_by_day INTEGER NULL,
                due_amount_dollars REAL NULL,
                buffer_months REAL NOT NULL,
                priority_group TEXT NOT NULL,
                protected INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS routing_baselines (
                envelope_name TEXT PRIMARY KEY,
                bps INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS routing_overrides (
                id TEXT PRIMARY KEY,
                envelope_name TEXT NOT NULL,
                delta_bps INTEGER NOT NULL,
                remaining_deposits INTEGER NULL,
                expires_on TEXT NULL,
                reason TEXT NULL,
                created_by TEXT NULL,
                allow_protected_reduction INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS ix_routing_overrides_envelope ON routing_overrides (envelope_name)",
            """
            CREATE TABLE IF NOT EXISTS balance_snapshots (
                date TEXT NOT NULL,
                envelope_name TEXT NOT NULL,
                balance_dollars REAL NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (date, envelope_name)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS deposit_events (
                id TEXT PRIMARY KEY,
                deposit_amount_dollars REAL NOT NULL,
                raw_request_json TEXT NULL,
                created_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS decisions (
                token TEXT PRIMARY KEY,
                sender TEXT NOT NULL,
                plan_json TEXT NOT NULL,
                chosen_option TEXT NULL,
                created_at TEXT NOT NULL,
                applied_at TEXT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS ix_decisions_sender ON decisions (sender, created_at)",
        ),
    ),
    (
        2,
        'add_envelope_rule_aliases',
        ("ALTER TABLE envelope_rules ADD COLUMN aliases_json TEXT NULL",),
    ),
)


def _rule_from_row(row: sqlite3.Row) -> EnvelopeRule:
    aliases: List[str] = []
    raw = row['aliases_json']
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = []
        if isinstance(parsed, list):
            aliases = [str(a) for a in parsed if str(a).strip()]
    return EnvelopeRule(
        id=row['id'],
        name=row['name'],
        aliases=aliases,
        monthly_budget_dollars=float(row['monthly_budget_dollars']),
        due_by_day=row['due_by_day'],
        due_amount_dollars=row['due_amount_dollars'],
        buffer_months=row['buffer_months'],
        priority_group=row['priority_group'],
        protected=bool(row['protected']),
        updated_at=row['updated_at'],
    )


def _override_from_row(row: sqlite3.Row) -> RoutingOverride:
    expires = row['expires_on']
    return RoutingOverride(
        id=row['id'],
        envelope_name=row['envelope_name'],
        delta_bps=int(row['delta_bps']),
        remaining_deposits=row['remaining_deposits'],
        expires_on=date.fromisoformat(expires) if expires else None,
        reason=row['reason'],
        created_by=row['created_by'],
        allow_protected_reduction=bool(row['allow_protected_reduction']),
        created_at=row['created_at'],
    )


class EnvelopeStore:
    """Short-lived SQLite connections over one database file.

    ``db_path`` defaults to :data:`envelope_engine.config.DB_PATH`.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH

    def _ensure_dirs(self) -> None:
        if self.db_path == DB_PATH:
            ensure_data_directories()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            applied = {row['version'] for row in conn.execute("SELECT version FROM schema_migrations")}
            for version, name, statements in MIGRATIONS:
                if version in applied:
                    continue
                for statement in statements:
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (version, name, utc_now_iso()),
                )
                logger.info("Applied migration %d (%s) to %s", version, name, self.db_path)
            conn.commit()

    # ------------------------------------------------------------------
    # Envelope rules
    # ------------------------------------------------------------------

    def list_rules(self) -> List[EnvelopeRule]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM envelope_rules ORDER BY name ASC").fetchall()
        return [_rule_from_row(row) for row in rows]

    def get_rule(self, name: str) -> Optional[EnvelopeRule]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM envelope_rules WHERE name = ?", (name,)).fetchone()
        return _rule_from_row(row) if row else None

    def upsert_rule(self, rule: EnvelopeRule) -> EnvelopeRule:
        """Insert or update by name; an existing row keeps its id."""
        existing = self.get_rule(rule.name)
        stored = replace(rule, id=existing.id if existing else rule.id, updated_at=utc_now_iso())
        aliases_json = json.dumps(list(stored.aliases)) if stored.aliases else None
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO envelope_rules (
                    id, name, aliases_json, monthly_budget_dollars, due_by_day, due_amount_dollars,
                    buffer_months, priority_group, protected, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    aliases_json=excluded.aliases_json,
                    monthly_budget_dollars=excluded.monthly_budget_dollars,
                    due_by_day=excluded.due_by_day,
                    due_amount_dollars=excluded.due_amount_dollars,
                    buffer_months=excluded.buffer_months,
                    priority_group=excluded.priority_group,
                    protected=excluded.protected,
                    updated_at=excluded.updated_at
                """,
                (
                    stored.id,
                    stored.name,
                    aliases_json,
                    stored.monthly_budget_dollars,
                    stored.due_by_day,
                    stored.due_amount_dollars,
                    stored.buffer_months,
                    stored.priority_group,
                    1 if stored.protected else 0,
                    stored.updated_at,
                ),
            )
            conn.commit()
        return stored

    def apply_rule_changes(self, envelope_name: str, changes: Mapping[str, Any]) -> EnvelopeRule:
        """Apply camelCase ``changes`` (see :data:`RULE_CHANGE_FIELDS`) to a stored rule.

        Raises:
            KeyError: If no rule exists for ``envelope_name``.
        """
        existing = self.get_rule(envelope_name)
        if existing is None:
            raise KeyError(f"No envelope rule found for: {envelope_name}")
        updates = {RULE_CHANGE_FIELDS[key]: value for key, value in changes.items() if key in RULE_CHANGE_FIELDS}
        updated = self.upsert_rule(replace(existing, **updates))
        logger.info("Updated rule %s: %s", envelope_name, ', '.join(sorted(changes)))
        return updated

    def rules_frame(self) -> pd.DataFrame:
        sql = (
            "SELECT name AS 'Envelope', priority_group AS 'Group', monthly_budget_dollars AS 'Monthly Budget', "
            "due_by_day AS 'Due Day', due_amount_dollars AS 'Due Amount', buffer_months AS 'Buffer Months', "
            "protected AS 'Protected' FROM envelope_rules ORDER BY name ASC"
        )
        with self.connect() as conn:
            df = pd.read_sql_query(sql, conn)
        if not df.empty:
            df['Protected'] = df['Protected'].astype(bool)
        return df

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def list_baselines(self) -> List[RoutingBaseline]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM routing_baselines ORDER BY envelope_name ASC").fetchall()
        return [
            RoutingBaseline(envelope_name=row['envelope_name'], bps=int(row['bps']), updated_at=row['updated_at'])
            for row in rows
        ]

    def upsert_baseline(self, envelope_name: str, bps: int) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO routing_baselines (envelope_name, bps, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(envelope_name) DO UPDATE SET bps=excluded.bps, updated_at=excluded.updated_at
                """,
                (envelope_name, clamp_int(bps, 0, BPS_TOTAL), utc_now_iso()),
            )
            conn.commit()

    def baselines_frame(self) -> pd.DataFrame:
        sql = "SELECT envelope_name AS 'Envelope', bps AS 'Bps' FROM routing_baselines ORDER BY envelope_name ASC"
        with self.connect() as conn:
            df = pd.read_sql_query(sql, conn)
        df['Share'] = df['Bps'] / BPS_TOTAL
        return df

    def list_active_overrides(self, today: date) -> List[RoutingOverride]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM routing_overrides
                WHERE (remaining_deposits IS NULL OR remaining_deposits > 0)
                  AND (expires_on IS NULL OR expires_on >= ?)
                ORDER BY created_at ASC
                """,
                (today.isoformat(),),
            ).fetchall()
        return [_override_from_row(row) for row in rows]

    def insert_override(self, override: RoutingOverride) -> str:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO routing_overrides (
                    id, envelope_name, delta_bps, remaining_deposits, expires_on, reason, created_by,
                    allow_protected_reduction, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    override.id,
                    override.envelope_name,
                    int(override.delta_bps),
                    override.remaining_deposits,
                    override.expires_on.isoformat() if override.expires_on else None,
                    override.reason,
                    override.created_by,
                    1 if override.allow_protected_reduction else 0,
                    override.created_at,
                ),
            )
            conn.commit()
        logger.info(
            "Stored routing override %s: %s %+d bps", override.id, override.envelope_name, override.delta_bps
        )
        return override.id

    def decrement_override(self, override_id: str) -> None:
        """Count one deposit off an override; never goes below zero, no-op without a countdown."""
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE routing_overrides
                SET remaining_deposits = CASE
                    WHEN remaining_deposits IS NULL THEN NULL
                    WHEN remaining_deposits <= 0 THEN 0
                    ELSE remaining_deposits - 1
                END
                WHERE id = ?
                """,
                (override_id,),
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Deposit events and snapshots
    # ------------------------------------------------------------------

    def try_insert_deposit_event(
        self,
        event_id: str,
        deposit_amount_dollars: float,
        raw_request_json: Optional[str] = None,
    ) -> bool:
        """Record a deposit event; ``False`` when ``event_id`` was already seen."""
        with self.connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO deposit_events (id, deposit_amount_dollars, raw_request_json, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (event_id, deposit_amount_dollars, raw_request_json, utc_now_iso()),
            )
            conn.commit()
            return cur.rowcount > 0

    def upsert_snapshots(self, on: date, balances: Mapping[str, float]) -> int:
        rows = [(on.isoformat(), name, float(balance), utc_now_iso()) for name, balance in balances.items()]
        if not rows:
            return 0
        with self.connect() as conn:
            conn.executemany(
                """
                INSERT INTO balance_snapshots (date, envelope_name, balance_dollars, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(date, envelope_name) DO UPDATE SET balance_dollars=excluded.balance_dollars
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    def snapshots_for_date(self, on: date) -> Dict[str, float]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT envelope_name, balance_dollars FROM balance_snapshots WHERE date = ?",
                (on.isoformat(),),
            ).fetchall()
        return {row['envelope_name']: float(row['balance_dollars']) for row in rows}

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def insert_decision(self, token: str, sender: str, plan_json: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO decisions (token, sender, plan_json, created_at) VALUES (?, ?, ?, ?)",
                (token, sender, plan_json, utc_now_iso()),
            )
            conn.commit()

    def get_decision(self, sender: str, token: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM decisions WHERE sender = ? AND token = ?",
                (sender, token),
            ).fetchone()
        return dict(row) if row else None

    def get_pending_decision(self, sender: str) -> Optional[Dict[str, Any]]:
        """Most recent decision for ``sender`` that has not been applied."""
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM decisions
                WHERE sender = ? AND (chosen_option IS NULL OR chosen_option = '')
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (sender,),
            ).fetchone()
        return dict(row) if row else None

    def mark_decision_chosen(self, token: str, chosen_option: str) -> bool:
        """Set the chosen option once; ``False`` if it was already set."""
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE decisions SET chosen_option = ?, applied_at = ?
                WHERE token = ? AND (chosen_option IS NULL OR chosen_option = '')
                """,
                (chosen_option, utc_now_iso(), token),
            )
            conn.commit()
            return cur.rowcount > 0

    def decisions_frame(self) -> pd.DataFrame:
        sql = (
            "SELECT token AS 'Token', sender AS 'Sender', chosen_option AS 'Chosen', "
            "created_at AS 'Created', applied_at AS 'Applied' FROM decisions ORDER BY created_at DESC"
        )
        with self.connect() as conn:
            return pd.read_sql_query(sql, conn)
