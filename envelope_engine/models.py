"""Data model for envelope rules, derived states, fix plans and deposit plans.

Everything here is a plain dataclass.  Objects that leave the engine (states,
issues, plans, deposit plans) expose ``to_dict`` producing the camelCase JSON
shape that callers persist; fix plans also round-trip through ``from_dict`` so
a stored decision can be replayed when the user picks option A, B or C.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

from .money import cents_from_dollars, dollars_from_cents

PRIORITY_GROUPS = (
    'Savings',
    'SafetyNet',
    'Necessities',
    'Pressing',
    'Kiddos',
    'Discretionary',
    'Other',
)

STATUS_OK = 'OK'
STATUS_BUFFER_BREACHED = 'buffer_breached'
STATUS_DUE_SOON = 'due_soon'
STATUS_OVERDUE = 'overdue'
ENVELOPE_STATUSES = (STATUS_OK, STATUS_BUFFER_BREACHED, STATUS_DUE_SOON, STATUS_OVERDUE)

ISSUE_TIMING_SHORTFALL = 'timing_shortfall'
ISSUE_OVERSPEND = 'overspend'
ISSUE_STRUCTURAL_UNDERFUND = 'structural_underfund'

SEVERITY_INFO = 'info'
SEVERITY_WARN = 'warn'
SEVERITY_ERROR = 'error'

OPTION_IDS = ('A', 'B', 'C')

# camelCase key -> EnvelopeRule attribute for the fields a rule_change step may touch
RULE_CHANGE_FIELDS = {
    'monthlyBudgetDollars': 'monthly_budget_dollars',
    'bufferMonths': 'buffer_months',
    'dueAmountDollars': 'due_amount_dollars',
    'dueByDay': 'due_by_day',
}

POD_ACCOUNT_TYPE = 'Pod'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass(frozen=True)
class AccountBalance:
    """A live account balance as reported by the bank aggregator."""

    name: str
    balance_dollars: Optional[float]
    type: str = POD_ACCOUNT_TYPE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccountBalance':
        return cls(
            name=str(data['name']),
            balance_dollars=_optional_float(data.get('balanceDollars')),
            type=str(data.get('type') or POD_ACCOUNT_TYPE),
        )


@dataclass
class EnvelopeRule:
    """Funding policy for one envelope.

    ``due_amount_dollars`` of ``None`` means "the monthly budget"; see
    :attr:`effective_due_amount`.
    """

    name: str
    monthly_budget_dollars: float
    due_by_day: Optional[int] = None
    due_amount_dollars: Optional[float] = None
    buffer_months: float = 0
    priority_group: str = 'Other'
    protected: bool = False
    aliases: List[str] = field(default_factory=list)
    id: str = field(default_factory=_new_id)
    updated_at: Optional[str] = None

    @property
    def effective_due_amount(self) -> float:
        if self.due_amount_dollars is None:
            return float(self.monthly_budget_dollars)
        return float(self.due_amount_dollars)

    @property
    def has_due_day(self) -> bool:
        return self.due_by_day is not None and self.due_by_day > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'aliases': list(self.aliases),
            'monthlyBudgetDollars': self.monthly_budget_dollars,
            'dueByDay': self.due_by_day,
            'dueAmountDollars': self.due_amount_dollars,
            'bufferMonths': self.buffer_months,
            'priorityGroup': self.priority_group,
            'protected': self.protected,
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvelopeRule':
        kwargs: Dict[str, Any] = {
            'name': str(data['name']),
            'monthly_budget_dollars': float(data.get('monthlyBudgetDollars', 0.0)),
            'due_by_day': _optional_int(data.get('dueByDay')),
            'due_amount_dollars': _optional_float(data.get('dueAmountDollars')),
            'buffer_months': data.get('bufferMonths', 0) or 0,
            'priority_group': str(data.get('priorityGroup') or 'Other'),
            'protected': bool(data.get('protected', False)),
            'aliases': [str(a) for a in data.get('aliases') or [] if str(a).strip()],
            'updated_at': data.get('updatedAt'),
        }
        if data.get('id'):
            kwargs['id'] = str(data['id'])
        return cls(**kwargs)


@dataclass(frozen=True)
class EnvelopeState:
    """Derived funding health of one envelope, recomputed on every request."""

    name: str
    balance_dollars: Optional[float]
    monthly_budget_dollars: float
    due_by_day: Optional[int]
    due_amount_dollars: float
    buffer_months: float
    required_floor_dollars: float
    required_by_due_dollars: Optional[float]
    available_to_spend_dollars: Optional[float]
    status: str = STATUS_OK
    status_reason: Optional[str] = None
    priority_group: str = 'Other'
    protected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'balanceDollars': self.balance_dollars,
            'monthlyBudgetDollars': self.monthly_budget_dollars,
            'dueByDay': self.due_by_day,
            'dueAmountDollars': self.due_amount_dollars,
            'bufferMonths': self.buffer_months,
            'requiredFloorDollars': self.required_floor_dollars,
            'requiredByDueDollars': self.required_by_due_dollars,
            'availableToSpendDollars': self.available_to_spend_dollars,
            'status': self.status,
            'statusReason': self.status_reason,
            'priorityGroup': self.priority_group,
            'protected': self.protected,
        }


@dataclass(frozen=True)
class DetectedIssue:
    type: str
    envelope_name: str
    severity: str
    shortfall_dollars: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'envelopeName': self.envelope_name,
            'severity': self.severity,
            'shortfallDollars': self.shortfall_dollars,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectedIssue':
        return cls(
            type=str(data['type']),
            envelope_name=str(data['envelopeName']),
            severity=str(data['severity']),
            shortfall_dollars=float(data['shortfallDollars']),
            reason=str(data.get('reason', '')),
        )


# ---------------------------------------------------------------------------
# Plan steps (tagged union on ``kind``)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransferStep:
    """Move money between envelopes by hand."""

    kind: ClassVar[str] = 'transfer'

    from_envelope: str
    to_envelope: str
    amount_dollars: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'fromEnvelope': self.from_envelope,
            'toEnvelope': self.to_envelope,
            'amountDollars': self.amount_dollars,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferStep':
        return cls(
            from_envelope=str(data['fromEnvelope']),
            to_envelope=str(data['toEnvelope']),
            amount_dollars=float(data['amountDollars']),
        )


@dataclass(frozen=True)
class RoutingOverrideStep:
    """Shift ``delta_bps`` of the next ``remaining_deposits`` deposits."""

    kind: ClassVar[str] = 'routing_override'

    envelope: str
    delta_bps: int
    remaining_deposits: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'envelope': self.envelope,
            'deltaBps': self.delta_bps,
            'remainingDeposits': self.remaining_deposits,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoutingOverrideStep':
        return cls(
            envelope=str(data['envelope']),
            delta_bps=int(data['deltaBps']),
            remaining_deposits=int(data['remainingDeposits']),
        )


@dataclass(frozen=True)
class RuleChangeStep:
    """Permanently change fields of an envelope rule.

    ``changes`` uses the camelCase keys of :data:`RULE_CHANGE_FIELDS`.
    """

    kind: ClassVar[str] = 'rule_change'

    envelope: str
    changes: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'envelope': self.envelope,
            'changes': dict(self.changes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RuleChangeStep':
        changes = {k: v for k, v in (data.get('changes') or {}).items() if k in RULE_CHANGE_FIELDS}
        return cls(envelope=str(data['envelope']), changes=changes)


PlanStep = Union[TransferStep, RoutingOverrideStep, RuleChangeStep]

STEP_TYPES = {
    TransferStep.kind: TransferStep,
    RoutingOverrideStep.kind: RoutingOverrideStep,
    RuleChangeStep.kind: RuleChangeStep,
}


def step_from_dict(data: Dict[str, Any]) -> PlanStep:
    kind = data.get('kind')
    step_type = STEP_TYPES.get(kind)
    if step_type is None:
        raise ValueError(f"Unknown plan step kind: {kind!r}")
    return step_type.from_dict(data)


@dataclass(frozen=True)
class FixPlanOption:
    option_id: str
    label: str
    vocabulary: str
    summary: str
    steps: List[PlanStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'optionId': self.option_id,
            'label': self.label,
            'vocabulary': self.vocabulary,
            'summary': self.summary,
            'steps': [step.to_dict() for step in self.steps],
        }
        if self.warnings:
            payload['warnings'] = list(self.warnings)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FixPlanOption':
        option_id = str(data['optionId'])
        if option_id not in OPTION_IDS:
            raise ValueError(f"Unknown option id: {option_id!r}")
        return cls(
            option_id=option_id,
            label=str(data.get('label', '')),
            vocabulary=str(data['vocabulary']),
            summary=str(data.get('summary', '')),
            steps=[step_from_dict(step) for step in data.get('steps') or []],
            warnings=[str(w) for w in data.get('warnings') or []],
        )


@dataclass(frozen=True)
class FixPlan:
    issue: DetectedIssue
    options: List[FixPlanOption]
    recommended_option_id: str

    def option(self, option_id: str) -> Optional[FixPlanOption]:
        return next((o for o in self.options if o.option_id == option_id), None)

    @property
    def recommended_option(self) -> Optional[FixPlanOption]:
        return self.option(self.recommended_option_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issue': self.issue.to_dict(),
            'options': [option.to_dict() for option in self.options],
            'recommendedOptionId': self.recommended_option_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FixPlan':
        recommended = str(data['recommendedOptionId'])
        if recommended not in OPTION_IDS:
            raise ValueError(f"Unknown option id: {recommended!r}")
        return cls(
            issue=DetectedIssue.from_dict(data['issue']),
            options=[FixPlanOption.from_dict(o) for o in data.get('options') or []],
            recommended_option_id=recommended,
        )


def plans_to_json(plans: Sequence[FixPlan]) -> str:
    return json.dumps([plan.to_dict() for plan in plans], sort_keys=True)


def plans_from_json(raw: str) -> List[FixPlan]:
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("Stored plans must be a JSON list")
    return [FixPlan.from_dict(item) for item in data]


# ---------------------------------------------------------------------------
# Deposit routing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RoutingBaseline:
    envelope_name: str
    bps: int
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'envelopeName': self.envelope_name, 'bps': self.bps, 'updatedAt': self.updated_at}


@dataclass(frozen=True)
class RoutingOverride:
    """A temporary signed bps adjustment applied on top of the baseline.

    ``remaining_deposits`` of ``None`` means no countdown; ``expires_on`` of
    ``None`` means no expiry.  ``created_at`` is the ordering key.
    """

    envelope_name: str
    delta_bps: int
    remaining_deposits: Optional[int] = None
    expires_on: Optional[date] = None
    reason: Optional[str] = None
    created_by: Optional[str] = None
    allow_protected_reduction: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=_new_id)

    def is_active(self, today: date) -> bool:
        if self.remaining_deposits is not None and self.remaining_deposits <= 0:
            return False
        if self.expires_on is not None and self.expires_on < today:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'envelopeName': self.envelope_name,
            'deltaBps': self.delta_bps,
            'remainingDeposits': self.remaining_deposits,
            'expiresOn': self.expires_on.isoformat() if self.expires_on else None,
            'reason': self.reason,
            'createdBy': self.created_by,
            'allowProtectedReduction': self.allow_protected_reduction,
            'createdAt': self.created_at,
        }


@dataclass(frozen=True)
class DepositPlanLine:
    """One envelope's share of a deposit; ``amount_dollars`` is an exact cent amount."""

    envelope_name: str
    bps: int
    amount_dollars: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {'envelopeName': self.envelope_name, 'bps': self.bps, 'amountDollars': float(self.amount_dollars)}


@dataclass(frozen=True)
class DepositPlan:
    deposit_amount_dollars: Decimal
    lines: List[DepositPlanLine]
    catch_all_envelope_name: str
    warnings: List[str] = field(default_factory=list)

    def line_for(self, envelope_name: str) -> Optional[DepositPlanLine]:
        return next((line for line in self.lines if line.envelope_name == envelope_name), None)

    @property
    def total_bps(self) -> int:
        return sum(line.bps for line in self.lines)

    @property
    def total_cents(self) -> int:
        return sum(cents_from_dollars(line.amount_dollars) for line in self.lines)

    @property
    def total_dollars(self) -> Decimal:
        return dollars_from_cents(self.total_cents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'depositAmountDollars': float(self.deposit_amount_dollars),
            'lines': [line.to_dict() for line in self.lines],
            'catchAllEnvelopeName': self.catch_all_envelope_name,
            'warnings': list(self.warnings),
        }
