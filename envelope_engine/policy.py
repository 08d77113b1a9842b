"""Donor eligibility and priority ordering.

Envelopes lend surplus in a fixed order, most willing lender first.  The
order is a lookup table, not a hierarchy: an unknown group ranks last.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import STATUS_DUE_SOON, STATUS_OVERDUE, EnvelopeState

BORROW_ORDER = (
    'Discretionary',
    'Pressing',
    'Necessities',
    'Kiddos',
    'Savings',
    'SafetyNet',
    'Other',
)

SAFETY_NET_GROUP = 'SafetyNet'
SAFETY_NET_ENVELOPE = 'Safety Net'
DISCRETIONARY_LIKE_GROUPS = frozenset({'Discretionary', 'Pressing'})

_RANKS = {group: index for index, group in enumerate(BORROW_ORDER)}


def group_rank(group: Optional[str]) -> int:
    return _RANKS.get(group, len(BORROW_ORDER))


def sort_by_rank(states: Sequence[EnvelopeState]) -> List[EnvelopeState]:
    """Stable sort of ``states`` by donor rank."""
    return sorted(states, key=lambda s: group_rank(s.priority_group))


def is_discretionary_like(group: Optional[str]) -> bool:
    return group in DISCRETIONARY_LIKE_GROUPS


@dataclass(frozen=True)
class DonorEligibility:
    ok: bool
    reason: Optional[str] = None


def can_borrow_from_donor(
    donor: EnvelopeState,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> DonorEligibility:
    """Decide whether surplus may be pulled from ``donor``.

    A SafetyNet-allow also counts as permission to reduce a protected
    envelope of the SafetyNet group.
    """
    if donor.balance_dollars is None or donor.available_to_spend_dollars is None:
        return DonorEligibility(False, "Missing balance.")

    if donor.status in (STATUS_DUE_SOON, STATUS_OVERDUE):
        return DonorEligibility(False, "Donor has a due-date requirement.")

    if donor.available_to_spend_dollars <= 0:
        return DonorEligibility(False, "No surplus above buffer floor.")

    is_safety_net = donor.priority_group == SAFETY_NET_GROUP
    if is_safety_net and not allow_safety_net:
        return DonorEligibility(False, "Safety Net is locked unless explicitly allowed.")

    if donor.protected and not allow_protected_reduction and not (is_safety_net and allow_safety_net):
        return DonorEligibility(False, "Protected envelope is locked unless explicitly allowed.")

    return DonorEligibility(True)


def is_protected_reduction_allowed(
    donor: EnvelopeState,
    allow_safety_net: bool = False,
    allow_protected_reduction: bool = False,
) -> bool:
    """Whether a routing offset may reduce ``donor``.

    Unlike :func:`can_borrow_from_donor`, the SafetyNet-allow here only
    unlocks the envelope literally named "Safety Net", not the whole group.
    """
    if not donor.protected:
        return True
    if allow_protected_reduction:
        return True
    return allow_safety_net and donor.name == SAFETY_NET_ENVELOPE
