"""Answer "how much of this deposit goes to envelope X" for a deposit event.

The transfer service asks once per envelope for the same deposit, so override
countdowns are only decremented the first time an idempotency key is seen.
Without a key the overrides are left untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional

from .config import EngineSettings, load_settings
from .db import EnvelopeStore
from .models import DepositPlan
from .money import cents_from_dollars, round_int
from .routing import compute_deposit_plan

logger = logging.getLogger(__name__)

AMOUNT_CENTS_KEYS = (
    'depositAmountInCents',
    'deposit_amount_in_cents',
    'depositAmountCents',
    'deposit_amount_cents',
    'amountInCents',
)
IDEMPOTENCY_HEADERS = ('x-sequence-request-id', 'idempotency-key', 'x-request-id')
IDEMPOTENCY_BODY_KEYS = ('eventId', 'requestId', 'transactionId', 'runId', 'id')


@dataclass
class DepositEventResult:
    envelope_name: str
    amount_in_cents: int
    plan: DepositPlan
    decremented: int = 0


def deposit_cents_from_payload(payload: Optional[Mapping[str, Any]]) -> Optional[int]:
    """First numeric cents value under one of :data:`AMOUNT_CENTS_KEYS`."""
    if not payload:
        return None
    for key in AMOUNT_CENTS_KEYS:
        value = payload.get(key)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        try:
            return round_int(float(value))
        except (TypeError, ValueError):
            continue
    return None


def idempotency_key_from_request(
    headers: Optional[Mapping[str, Any]] = None,
    payload: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    for name in IDEMPOTENCY_HEADERS:
        value = lowered.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if value:
            return str(value)
    for key in IDEMPOTENCY_BODY_KEYS:
        value = (payload or {}).get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def handle_deposit_event(
    store: EnvelopeStore,
    envelope_name: str,
    today: date,
    deposit_amount_dollars: Optional[float] = None,
    idempotency_key: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    raw_request: Optional[Mapping[str, Any]] = None,
) -> DepositEventResult:
    """Compute ``envelope_name``'s share of a deposit and count down overrides once.

    ``deposit_amount_dollars`` of ``None`` falls back to the configured
    deposit assumption.  An envelope with no line in the plan gets 0 cents.
    """
    settings = settings or load_settings()
    amount = settings.deposit_amount_assumption_dollars if deposit_amount_dollars is None else deposit_amount_dollars

    baselines = store.list_baselines()
    rules = store.list_rules()
    overrides = store.list_active_overrides(today)
    plan = compute_deposit_plan(
        amount,
        baselines,
        overrides,
        rules,
        catch_all_envelope_name=settings.catch_all_envelope_name,
        max_adjustment_per_deposit_dollars=settings.max_adjustment_per_deposit_dollars,
    )
    line = plan.line_for(envelope_name)
    amount_in_cents = cents_from_dollars(line.amount_dollars) if line else 0

    decremented = 0
    if idempotency_key:
        first_seen = store.try_insert_deposit_event(
            idempotency_key,
            amount,
            raw_request_json=json.dumps(dict(raw_request or {}), sort_keys=True, default=str),
        )
        if first_seen:
            for override in overrides:
                if override.remaining_deposits is not None:
                    store.decrement_override(override.id)
                    decremented += 1
            logger.info("Deposit event %s counted down %d override(s)", idempotency_key, decremented)
        else:
            logger.debug("Deposit event %s already seen; overrides unchanged", idempotency_key)
    else:
        logger.debug("Deposit request without idempotency key; overrides unchanged")

    return DepositEventResult(
        envelope_name=envelope_name,
        amount_in_cents=amount_in_cents,
        plan=plan,
        decremented=decremented,
    )
