"""Configuration management for the envelope engine.

This module centralizes paths, engine defaults and environment variable
overrides, plus the logging setup shared by the scripts and the dashboard.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

# Base project root - assumes this file is in envelope_engine/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("ENVELOPE_DATA_DIR", _PROJECT_ROOT / "data"))
SEED_DIR = DATA_DIR / "seed"

# Database
DB_PATH = Path(
    os.getenv("ENVELOPE_DB_PATH", DATA_DIR / "envelopes.db")
).resolve()

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

DEFAULT_CATCH_ALL_ENVELOPE = "Move to ___"
DEFAULT_MAX_ADJUSTMENT_PER_DEPOSIT = 200.0
DEFAULT_DUE_SOON_WINDOW_DAYS = 7
DEFAULT_DEPOSIT_AMOUNT_ASSUMPTION = 2500.0
DEFAULT_ROUTING_DEPOSITS = 2
DEFAULT_DEPOSIT_CADENCE_DAYS = 14


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, SEED_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class EngineSettings:
    """Tunable knobs for issue detection, plan generation and routing."""

    catch_all_envelope_name: str = DEFAULT_CATCH_ALL_ENVELOPE
    max_adjustment_per_deposit_dollars: float = DEFAULT_MAX_ADJUSTMENT_PER_DEPOSIT
    due_soon_window_days: int = DEFAULT_DUE_SOON_WINDOW_DAYS
    deposit_amount_assumption_dollars: float = DEFAULT_DEPOSIT_AMOUNT_ASSUMPTION
    routing_deposits: int = DEFAULT_ROUTING_DEPOSITS
    deposit_cadence_days: int = DEFAULT_DEPOSIT_CADENCE_DAYS


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _env_float(env, key, float(default))
    return int(value)


def load_settings(env: Optional[Mapping[str, str]] = None) -> EngineSettings:
    """Build :class:`EngineSettings` from ``env`` (defaults to ``os.environ``).

    Values that do not parse as numbers fall back to the defaults.
    """
    env = os.environ if env is None else env
    catch_all = (env.get("ROUTING_CATCH_ALL_POD") or "").strip() or DEFAULT_CATCH_ALL_ENVELOPE
    return EngineSettings(
        catch_all_envelope_name=catch_all,
        max_adjustment_per_deposit_dollars=_env_float(
            env, "ROUTING_MAX_ADJUSTMENT_PER_DEPOSIT", DEFAULT_MAX_ADJUSTMENT_PER_DEPOSIT
        ),
        due_soon_window_days=_env_int(env, "FIXIT_DUE_SOON_WINDOW_DAYS", DEFAULT_DUE_SOON_WINDOW_DAYS),
        deposit_amount_assumption_dollars=_env_float(
            env, "FIXIT_DEPOSIT_AMOUNT_ASSUMPTION", DEFAULT_DEPOSIT_AMOUNT_ASSUMPTION
        ),
        routing_deposits=_env_int(env, "FIXIT_ROUTING_DEPOSITS", DEFAULT_ROUTING_DEPOSITS),
        deposit_cadence_days=_env_int(env, "FIXIT_DEPOSIT_CADENCE_DAYS", DEFAULT_DEPOSIT_CADENCE_DAYS),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Send log records to stdout.

    Args:
        level: Level name; defaults to ``ENVELOPE_LOG_LEVEL`` or ``INFO``.
    """
    level_name = (level or os.getenv("ENVELOPE_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
