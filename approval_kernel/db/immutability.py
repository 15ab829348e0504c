"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE reach the database.
Listeners registered here check the append-only and terminal-state rules
and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError

Entity                  | When immutable
------------------------|------------------------------------------------
NotificationModel       | Always (append-only)
DelegationAuditEvent    | Always (append-only)
TemporaryApproverModel  | Never deletable; frozen once EXPIRED
ExpenseModel            | Once APPROVED/REJECTED, except audit fields

``updated_at`` is audit metadata and may always change.

Conditional bulk UPDATE statements (the delegation compare-and-set) bypass
mapper events; they are the sanctioned path for the ACTIVE -> EXPIRED
transition and are guarded in SQL by their WHERE clause.

Usage:

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at"})

_registered = False


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(entity_type, str(entity_id), reason)


def _changed_fields(target) -> set[str]:
    state = inspect(target)
    changed = set()
    for attr in state.mapper.column_attrs:
        if get_history(target, attr.key).has_changes():
            changed.add(attr.key)
    return changed


def _previous_value(target, key: str):
    history = get_history(target, key)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _check_notification_update(mapper, connection, target):
    raise _blocked("Notification", target.id, "UPDATE", "notifications are append-only")


def _check_notification_delete(mapper, connection, target):
    raise _blocked("Notification", target.id, "DELETE", "notifications are append-only")


def _check_audit_event_update(mapper, connection, target):
    raise _blocked(
        "DelegationAuditEvent", target.id, "UPDATE", "audit events are append-only",
    )


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked(
        "DelegationAuditEvent", target.id, "DELETE", "audit events are append-only",
    )


def _check_temporary_approver_update(mapper, connection, target):
    if _previous_value(target, "status") != "EXPIRED":
        return
    if _changed_fields(target) - _AUDIT_FIELDS:
        raise _blocked(
            "TemporaryApprover", target.id, "UPDATE", "expired delegations are frozen",
        )


def _check_temporary_approver_delete(mapper, connection, target):
    raise _blocked(
        "TemporaryApprover", target.id, "DELETE",
        "delegations are retained for audit; deactivate instead",
    )


def _check_expense_update(mapper, connection, target):
    if _previous_value(target, "status") not in ("APPROVED", "REJECTED"):
        return
    if _changed_fields(target) - _AUDIT_FIELDS:
        raise _blocked(
            "Expense", target.id, "UPDATE", "decided expenses are terminal",
        )


def _listeners():
    from approval_kernel.models.delegation_audit import DelegationAuditEventModel
    from approval_kernel.models.expense import ExpenseModel
    from approval_kernel.models.notification import NotificationModel
    from approval_kernel.models.temporary_approver import TemporaryApproverModel

    return (
        (NotificationModel, "before_update", _check_notification_update),
        (NotificationModel, "before_delete", _check_notification_delete),
        (DelegationAuditEventModel, "before_update", _check_audit_event_update),
        (DelegationAuditEventModel, "before_delete", _check_audit_event_delete),
        (TemporaryApproverModel, "before_update", _check_temporary_approver_update),
        (TemporaryApproverModel, "before_delete", _check_temporary_approver_delete),
        (ExpenseModel, "before_update", _check_expense_update),
    )


def register_immutability_listeners() -> None:
    """Register all immutability event listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for target, name, fn in _listeners():
        event.listen(target, name, fn)
    _registered = True

