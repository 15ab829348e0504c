"""
Notification content and gating rules (``approval_kernel.domain.notifications``).

Responsibility
--------------
Builds the ``NotificationRecord`` for every workflow event (title, message,
navigation target, action flag) and decides whether a user's preferences
permit a push of a given type.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  NotificationRouter resolves the
audience; this module only shapes content and applies preference gates.

Invariants enforced
-------------------
* The master ``push_notifications`` flag gates every push.
* EXPENSE_SUBMITTED and PENDING_APPROVAL only reach APPROVER or
  PRODUCTION_HEAD users; EXPENSE_APPROVED/REJECTED only reach USER-role
  users.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from approval_kernel.db.types import format_money
from approval_kernel.domain.dtos import NotificationRecord, UserSnapshot
from approval_kernel.domain.types import NotificationType, UserRole

_REVIEWER_ROLES = frozenset({UserRole.APPROVER, UserRole.PRODUCTION_HEAD})

_DASHBOARD_BY_ROLE: dict[UserRole, str] = {
    UserRole.USER: "user_project_dashboard/{project_id}",
    UserRole.APPROVER: "approver_project_dashboard/{project_id}",
    UserRole.PRODUCTION_HEAD: "production_head_project_dashboard/{project_id}",
}


def pending_approvals_target(project_id: str) -> str:
    return f"pending_approvals/{project_id}"


def expense_list_target(project_id: str) -> str:
    return f"expense_list/{project_id}"


def dashboard_target(role: UserRole | None, project_id: str) -> str:
    """Per-role project dashboard; unknown roles land on project selection."""
    template = _DASHBOARD_BY_ROLE.get(role) if role is not None else None
    if template is None:
        return "project_selection"
    return template.format(project_id=project_id)


def preference_allows(user: UserSnapshot, notification_type: NotificationType) -> bool:
    """Role gate plus preference flag for one notification type."""
    prefs = user.preferences
    if not prefs.push_notifications:
        return False
    if notification_type == NotificationType.EXPENSE_SUBMITTED:
        return user.role in _REVIEWER_ROLES and prefs.expense_submitted
    if notification_type == NotificationType.PENDING_APPROVAL:
        return user.role in _REVIEWER_ROLES and prefs.pending_approvals
    if notification_type == NotificationType.EXPENSE_APPROVED:
        return user.role == UserRole.USER and prefs.expense_approved
    if notification_type == NotificationType.EXPENSE_REJECTED:
        return user.role == UserRole.USER and prefs.expense_rejected
    if notification_type == NotificationType.PROJECT_ASSIGNMENT:
        return prefs.project_assignment
    return True


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def expense_submitted(
    *,
    recipient_id: str,
    recipient_role: UserRole,
    project_id: str,
    project_name: str,
    expense_id: str,
    submitter_name: str,
    amount: Decimal,
    category: str,
    currency_symbol: str = "₹",
) -> NotificationRecord:
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=recipient_role.value,
        title="New Expense Submitted",
        message=(
            f"New expense of {format_money(amount, currency_symbol)} submitted by "
            f"{submitter_name} in {project_name} (Category: {category})"
        ),
        type=NotificationType.EXPENSE_SUBMITTED,
        project_id=project_id,
        project_name=project_name,
        related_id=expense_id,
        action_required=True,
        navigation_target=pending_approvals_target(project_id),
    )


def expense_decided(
    *,
    recipient_id: str,
    project_id: str,
    project_name: str,
    expense_id: str,
    approved: bool,
    amount: Decimal,
    reviewer_name: str,
    comments: str | None = None,
    currency_symbol: str = "₹",
) -> NotificationRecord:
    verb = "approved" if approved else "rejected"
    message = (
        f"Your expense of {format_money(amount, currency_symbol)} in "
        f"{project_name} has been {verb} by {reviewer_name}"
    )
    if not approved and comments:
        message += f" - Reason: {comments}"
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=UserRole.USER.value,
        title="Expense Approved" if approved else "Expense Rejected",
        message=message,
        type=(
            NotificationType.EXPENSE_APPROVED if approved
            else NotificationType.EXPENSE_REJECTED
        ),
        project_id=project_id,
        project_name=project_name,
        related_id=expense_id,
        action_required=False,
        navigation_target=expense_list_target(project_id),
    )


def project_assignment(
    *,
    recipient_id: str,
    recipient_role: UserRole | None,
    project_id: str,
    project_name: str,
    assigned_role_label: str,
) -> NotificationRecord:
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=recipient_role.value if recipient_role else "",
        title="New Project Assignment",
        message=f"You have been assigned as {assigned_role_label} to project: {project_name}",
        type=NotificationType.PROJECT_ASSIGNMENT,
        project_id=project_id,
        project_name=project_name,
        related_id=project_id,
        action_required=False,
        navigation_target=dashboard_target(recipient_role, project_id),
    )


def pending_approvals(
    *,
    recipient_id: str,
    project_id: str,
    project_name: str,
    pending_count: int,
) -> NotificationRecord:
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=UserRole.PRODUCTION_HEAD.value,
        title="Pending Approvals",
        message=f"{pending_count} expenses awaiting approval in {project_name}",
        type=NotificationType.PENDING_APPROVAL,
        project_id=project_id,
        project_name=project_name,
        related_id=project_id,
        action_required=True,
        navigation_target=pending_approvals_target(project_id),
    )


def temporary_approver_assigned(
    *,
    recipient_id: str,
    project_id: str,
    project_name: str,
    delegation_id: str,
    expiring_date: datetime | None,
) -> NotificationRecord:
    if expiring_date is None:
        until = "further notice"
    else:
        until = expiring_date.strftime("%d %b %Y at %H:%M")
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=UserRole.APPROVER.value,
        title="Temporary Approver Assignment",
        message=(
            f"You have been assigned as a temporary approver to project "
            f"'{project_name}' until {until}. "
            "You can now access and manage this project."
        ),
        type=NotificationType.TEMPORARY_APPROVER_ASSIGNMENT,
        project_id=project_id,
        project_name=project_name,
        related_id=delegation_id,
        action_required=True,
        navigation_target=dashboard_target(UserRole.APPROVER, project_id),
    )


def delegation_ended(
    *,
    recipient_id: str,
    recipient_role: UserRole,
    project_id: str,
    project_name: str,
    delegation_id: str,
    approver_id: str,
    approver_name: str,
    removed_by: str | None = None,
) -> NotificationRecord:
    """DELEGATION_EXPIRED notice for the former delegate or a production head.

    ``removed_by`` set means a manual removal rather than automatic expiry.
    """
    ending = "has expired" if removed_by is None else f"was removed by {removed_by}"
    if recipient_id == approver_id:
        title = "Temporary Approver Access Ended"
        message = (
            f"Your temporary approver access to project '{project_name}' {ending}."
        )
        target = "project_selection"
    else:
        title = "Temporary Approver Expired"
        message = (
            f"Temporary approver {approver_name} for project "
            f"'{project_name}' {ending}."
        )
        target = dashboard_target(recipient_role, project_id)
    return NotificationRecord(
        recipient_id=recipient_id,
        recipient_role=recipient_role.value,
        title=title,
        message=message,
        type=NotificationType.DELEGATION_EXPIRED,
        project_id=project_id,
        project_name=project_name,
        related_id=delegation_id,
        action_required=False,
        navigation_target=target,
    )
