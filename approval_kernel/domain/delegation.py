"""
Delegation state machine (``approval_kernel.domain.delegation``).

Responsibility
--------------
Pure rules for a single temporary-approver delegation: its lifecycle
states, which transitions are legal, and when an active delegation is due
for expiry.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.

Invariants enforced
-------------------
* NONE -> ACTIVE -> EXPIRED.  EXPIRED is terminal; a new delegation is a
  new row, never a resurrection.
* A delegation is due iff it is active, has an expiring date, and
  ``now > expiring_date`` (strict).  Open-ended delegations are never due.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from approval_kernel.domain.dtos import TemporaryApproverRecord
from approval_kernel.domain.types import DelegationStatus

_SECONDS_PER_DAY = 24 * 60 * 60


class DelegationState(str, Enum):
    NONE = "NONE"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


DELEGATION_TRANSITIONS: dict[DelegationState, frozenset[DelegationState]] = {
    DelegationState.NONE: frozenset({DelegationState.ACTIVE}),
    DelegationState.ACTIVE: frozenset({DelegationState.ACTIVE, DelegationState.EXPIRED}),
    DelegationState.EXPIRED: frozenset(),
}


def state_of(record: TemporaryApproverRecord | None) -> DelegationState:
    if record is None:
        return DelegationState.NONE
    if record.is_active and record.status == DelegationStatus.ACTIVE:
        return DelegationState.ACTIVE
    return DelegationState.EXPIRED


def can_transition(current: DelegationState, target: DelegationState) -> bool:
    return target in DELEGATION_TRANSITIONS[current]


def is_due(record: TemporaryApproverRecord, now: datetime) -> bool:
    """True when an active delegation has passed its expiring date."""
    if not record.is_active or record.expiring_date is None:
        return False
    return now > record.expiring_date


def is_effective(record: TemporaryApproverRecord | None, now: datetime) -> bool:
    """Active and not yet due.  A due-but-unswept row grants nothing."""
    return (
        record is not None
        and state_of(record) == DelegationState.ACTIVE
        and not is_due(record, now)
    )


def remaining_days(record: TemporaryApproverRecord, now: datetime) -> int | None:
    """Whole days left before expiry; None for open-ended, 0 once past."""
    if record.expiring_date is None:
        return None
    seconds = (record.expiring_date - now).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // _SECONDS_PER_DAY)


def validate_window(start_date: datetime, expiring_date: datetime | None) -> bool:
    return expiring_date is None or expiring_date >= start_date
