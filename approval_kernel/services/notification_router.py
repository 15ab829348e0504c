"""
NotificationRouter -- audience resolution and notification fan-out.

Responsibility:
    Turns workflow events (submission, decision, assignment, pending
    reminder, delegation assigned / ended) into one persisted notification
    per recipient, and dispatches device pushes only to users who pass the
    assignment, preference and token filters.

Architecture position:
    Kernel > Services.  Uses AuthorityResolver for audiences, selectors for
    users, ``domain.notifications`` for content, and the PushTransport port
    for delivery.

Invariants enforced:
    - One row per recipient; empty recipient ids are skipped.
    - Each row is written in its own SAVEPOINT; a failed row never aborts
      the others nor the caller's transaction.
    - Push privacy boundary: a push is sent only if the recipient passes
      ``is_user_assigned_to_project`` for that project, their preferences
      allow the type, and they have a device token.
    - Push and persistence failures are logged and swallowed.

Failure modes:
    - EmptyRecipientError from ``notify_decision`` / ``notify_assignment``
      when the single recipient id is empty.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.domain import notifications as templates
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import (
    NotificationDispatch,
    NotificationRecord,
    ProjectSnapshot,
    PushFanoutResult,
    TemporaryApproverRecord,
    UserSnapshot,
)
from approval_kernel.domain.ports import PushTransport
from approval_kernel.domain.types import AuthoritySource, NotificationType, UserRole
from approval_kernel.exceptions import (
    EmptyRecipientError,
    ProjectNotFoundError,
    UserNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.user import UserModel
from approval_kernel.selectors.notification_selector import NotificationSelector
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.selectors.user_selector import UserSelector
from approval_kernel.services.authority_resolver import AuthorityResolver
from approval_kernel.services.base import BaseService

logger = get_logger("services.notification_router")


class NotificationRouter(BaseService[NotificationModel]):
    """Routes workflow events to the right recipients."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        authority: AuthorityResolver | None = None,
        push_transport: PushTransport | None = None,
        currency_symbol: str = "₹",
        push_enabled: bool = True,
    ):
        super().__init__(session, clock)
        self._authority = authority or AuthorityResolver(session, clock)
        self._push = push_transport
        self._push_enabled = push_enabled
        self._currency_symbol = currency_symbol
        self._projects = ProjectSelector(session)
        self._users = UserSelector(session)
        self._notifications = NotificationSelector(session)

    # ------------------------------------------------------------------
    # Workflow events
    # ------------------------------------------------------------------

    def notify_submission(
        self,
        project_id: str,
        expense_id: str,
        submitter_name: str,
        amount: Decimal,
        category: str,
    ) -> NotificationDispatch:
        """EXPENSE_SUBMITTED to every approver and production head."""
        project = self._require_project(project_id)
        authority = self._authority.authority_for(project_id)
        if authority.is_empty:
            logger.warning(
                "notification_audience_empty",
                extra={"project_id": project_id, "expense_id": expense_id},
            )
            return NotificationDispatch(NotificationType.EXPENSE_SUBMITTED)

        def build(recipient_id: str, role: UserRole) -> NotificationRecord:
            return templates.expense_submitted(
                recipient_id=recipient_id,
                recipient_role=role,
                project_id=project_id,
                project_name=project.name,
                expense_id=expense_id,
                submitter_name=submitter_name,
                amount=amount,
                category=category,
                currency_symbol=self._currency_symbol,
            )

        records = [build(uid, UserRole.APPROVER) for uid in sorted(authority.approver_ids)]
        records += [
            build(uid, UserRole.PRODUCTION_HEAD)
            for uid in sorted(authority.production_head_ids)
        ]
        dispatch = self._persist(
            NotificationType.EXPENSE_SUBMITTED,
            records,
            fallback_used=authority.source == AuthoritySource.FALLBACK,
        )

        title, body = records[0].title, records[0].message
        for role in (UserRole.APPROVER, UserRole.PRODUCTION_HEAD):
            self.notify_by_role_filtered(
                role, project_id, title, body, NotificationType.EXPENSE_SUBMITTED,
                data={"expenseId": expense_id},
            )
        return dispatch

    def notify_decision(
        self,
        expense_id: str,
        project_id: str,
        submitter_id: str,
        approved: bool,
        amount: Decimal,
        reviewer_name: str,
        comments: str | None = None,
    ) -> NotificationDispatch:
        """EXPENSE_APPROVED / EXPENSE_REJECTED to the submitter only."""
        notification_type = (
            NotificationType.EXPENSE_APPROVED if approved
            else NotificationType.EXPENSE_REJECTED
        )
        if not submitter_id:
            raise EmptyRecipientError(notification_type.value)
        project = self._require_project(project_id)
        record = templates.expense_decided(
            recipient_id=submitter_id,
            project_id=project_id,
            project_name=project.name,
            expense_id=expense_id,
            approved=approved,
            amount=amount,
            reviewer_name=reviewer_name,
            comments=comments,
            currency_symbol=self._currency_symbol,
        )
        dispatch = self._persist(notification_type, [record])
        submitter = self._users.get(submitter_id)
        if submitter is not None:
            self._push_to(submitter, project_id, record, data={"expenseId": expense_id})
        return dispatch

    def notify_assignment(
        self,
        project_id: str,
        user_id: str,
        assigned_role_label: str,
    ) -> NotificationDispatch:
        """PROJECT_ASSIGNMENT; navigation depends on the recipient's role."""
        if not user_id:
            raise EmptyRecipientError(NotificationType.PROJECT_ASSIGNMENT.value)
        project = self._require_project(project_id)
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        record = templates.project_assignment(
            recipient_id=user_id,
            recipient_role=user.role,
            project_id=project_id,
            project_name=project.name,
            assigned_role_label=assigned_role_label,
        )
        dispatch = self._persist(NotificationType.PROJECT_ASSIGNMENT, [record])
        self._push_to(user, project_id, record)
        return dispatch

    def notify_pending_approvals(
        self,
        project_id: str,
        pending_count: int,
    ) -> NotificationDispatch:
        """PENDING_APPROVAL to the project's production heads only."""
        project = self._require_project(project_id)
        heads = self._users.get_many(project.production_head_ids)
        recipients = sorted(
            uid for uid, user in heads.items() if user.role == UserRole.PRODUCTION_HEAD
        )
        records = [
            templates.pending_approvals(
                recipient_id=uid,
                project_id=project_id,
                project_name=project.name,
                pending_count=pending_count,
            )
            for uid in recipients
        ]
        dispatch = self._persist(NotificationType.PENDING_APPROVAL, records)
        if records:
            self.notify_by_role_filtered(
                UserRole.PRODUCTION_HEAD,
                project_id,
                records[0].title,
                records[0].message,
                NotificationType.PENDING_APPROVAL,
            )
        return dispatch

    def notify_temporary_approver_assigned(
        self,
        record: TemporaryApproverRecord,
        project_name: str,
    ) -> NotificationDispatch:
        notification = templates.temporary_approver_assigned(
            recipient_id=record.approver_id,
            project_id=record.project_id,
            project_name=project_name,
            delegation_id=record.id,
            expiring_date=record.expiring_date,
        )
        dispatch = self._persist(
            NotificationType.TEMPORARY_APPROVER_ASSIGNMENT, [notification],
        )
        delegate = self._users.get(record.approver_id)
        if delegate is not None:
            self._push_to(delegate, record.project_id, notification)
        return dispatch

    def notify_delegation_ended(
        self,
        record: TemporaryApproverRecord,
        project: ProjectSnapshot,
        removed_by: str | None = None,
    ) -> NotificationDispatch:
        """DELEGATION_EXPIRED to the former delegate and the production heads."""
        heads = self._users.get_many(project.production_head_ids)
        audience: list[tuple[str, UserRole]] = [(record.approver_id, UserRole.APPROVER)]
        audience += [
            (uid, UserRole.PRODUCTION_HEAD)
            for uid in sorted(heads)
            if heads[uid].role == UserRole.PRODUCTION_HEAD and uid != record.approver_id
        ]
        records = [
            templates.delegation_ended(
                recipient_id=uid,
                recipient_role=role,
                project_id=project.id,
                project_name=project.name,
                delegation_id=record.id,
                approver_id=record.approver_id,
                approver_name=record.approver_name,
                removed_by=removed_by,
            )
            for uid, role in audience
        ]
        return self._persist(NotificationType.DELEGATION_EXPIRED, records)

    # ------------------------------------------------------------------
    # Push fan-out
    # ------------------------------------------------------------------

    def notify_by_role_filtered(
        self,
        role: UserRole,
        project_id: str,
        title: str,
        message: str,
        notification_type: NotificationType,
        data: Mapping[str, str] | None = None,
    ) -> PushFanoutResult:
        """Push to users of ``role`` who are assigned, opted in and reachable."""
        try:
            candidates = self._users.by_role(role)
        except SQLAlchemyError:
            logger.error(
                "push_audience_lookup_failed",
                extra={"role": role.value, "project_id": project_id},
                exc_info=True,
            )
            return PushFanoutResult(role=role, project_id=project_id, candidates=0)

        delivered: list[str] = []
        not_assigned: list[str] = []
        opted_out: list[str] = []
        no_token: list[str] = []
        disabled: list[str] = []
        failed: list[str] = []
        payload = {
            "type": notification_type.value,
            "projectId": project_id,
            **(data or {}),
        }
        for user in candidates:
            outcome = self._deliver(user, project_id, title, message, notification_type, payload)
            {
                "delivered": delivered,
                "not_assigned": not_assigned,
                "opted_out": opted_out,
                "no_token": no_token,
                "disabled": disabled,
                "failed": failed,
            }[outcome].append(user.uid)

        result = PushFanoutResult(
            role=role,
            project_id=project_id,
            candidates=len(candidates),
            delivered=tuple(delivered),
            not_assigned=tuple(not_assigned),
            opted_out=tuple(opted_out),
            no_token=tuple(no_token),
            disabled=tuple(disabled),
            failed=tuple(failed),
        )
        logger.info(
            "push_fanout_completed",
            extra={
                "role": role.value,
                "project_id": project_id,
                "notification_type": notification_type.value,
                "candidates": result.candidates,
                "delivered": len(delivered),
                "filtered": len(not_assigned) + len(opted_out) + len(no_token),
                "failed": len(failed),
            },
        )
        return result

    def _push_to(
        self,
        user: UserSnapshot,
        project_id: str,
        record: NotificationRecord,
        data: Mapping[str, str] | None = None,
    ) -> str:
        payload = {"type": record.type.value, "projectId": project_id, **(data or {})}
        return self._deliver(user, project_id, record.title, record.message, record.type, payload)

    def _deliver(
        self,
        user: UserSnapshot,
        project_id: str,
        title: str,
        message: str,
        notification_type: NotificationType,
        payload: Mapping[str, str],
    ) -> str:
        if not self._authority.is_user_assigned_to_project(user, project_id):
            logger.debug(
                "push_filtered",
                extra={"user_id": user.uid, "project_id": project_id, "filter": "not_assigned"},
            )
            return "not_assigned"
        if not templates.preference_allows(user, notification_type):
            return "opted_out"
        if not user.device_token:
            return "no_token"
        if self._push is None or not self._push_enabled:
            return "disabled"
        try:
            sent = self._push.send_push(user.device_token, title, message, payload)
        except Exception:
            logger.warning(
                "push_send_failed",
                extra={"user_id": user.uid, "project_id": project_id},
                exc_info=True,
            )
            return "failed"
        if not sent:
            logger.warning(
                "push_send_rejected",
                extra={"user_id": user.uid, "project_id": project_id},
            )
            return "failed"
        return "delivered"

    def refresh_device_token(self, user_id: str) -> str | None:
        """Store the transport's current device token on the user.

        Returns the stored token, or None when there is no transport or no
        token to store.

        Raises:
            UserNotFoundError: unknown ``user_id``.
        """
        if self._push is None:
            return None
        token = self._push.get_current_device_token()
        if not token:
            logger.info("device_token_unavailable", extra={"user_id": user_id})
            return None
        result = self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(device_token=token, updated_at=self._clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise UserNotFoundError(user_id)
        logger.info("device_token_refreshed", extra={"user_id": user_id})
        return token

    def inbox(
        self,
        recipient_id: str,
        related_id: str | None = None,
    ) -> list[NotificationRecord]:
        """Persisted notifications of one recipient, oldest first."""
        if related_id is None:
            return self._notifications.for_recipient(recipient_id)
        return [
            n for n in self._notifications.for_related(related_id)
            if n.recipient_id == recipient_id
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(
        self,
        notification_type: NotificationType,
        records: Iterable[NotificationRecord],
        fallback_used: bool = False,
    ) -> NotificationDispatch:
        persisted: list[str] = []
        failed: list[str] = []
        skipped = 0
        now = self._clock.now()
        for record in records:
            if not record.recipient_id:
                skipped += 1
                continue
            savepoint = self.session.begin_nested()
            try:
                self.session.add(NotificationModel.from_dto(record, created_at=now))
                self.session.flush()
                savepoint.commit()
                persisted.append(record.recipient_id)
            except SQLAlchemyError:
                savepoint.rollback()
                failed.append(record.recipient_id)
                logger.error(
                    "notification_persist_failed",
                    extra={
                        "recipient_id": record.recipient_id,
                        "notification_type": notification_type.value,
                        "project_id": record.project_id,
                    },
                    exc_info=True,
                )

        logger.info(
            "notifications_dispatched",
            extra={
                "notification_type": notification_type.value,
                "recipient_count": len(persisted),
                "failed_count": len(failed),
                "skipped_empty": skipped,
                "fallback_used": fallback_used,
            },
        )
        return NotificationDispatch(
            notification_type=notification_type,
            recipients=tuple(persisted),
            failed=tuple(failed),
            skipped_empty=skipped,
            fallback_used=fallback_used,
        )

    def _require_project(self, project_id: str) -> ProjectSnapshot:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project
