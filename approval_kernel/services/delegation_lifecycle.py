"""
DelegationLifecycle -- temporary-approver state machine and side effects.

Responsibility:
    Creates, edits, expires and removes temporary-approver delegations and
    performs their compensating actions: team-membership changes, the
    project's ``temporary_approver_phone`` marker, the audit trail, and the
    assignment / ended notifications.

Architecture position:
    Kernel > Services.  The only writer of ``temporary_approvers``.  Pure
    transition rules live in ``domain.delegation``.

Invariants enforced:
    - At most one active delegation per project.  ``create`` refuses a
      second one (a due-but-unswept one is expired first).
    - ACTIVE -> EXPIRED is a conditional write on ``is_active = true``.
      The loser of a race gets a NOOP success and performs no side effects,
      so team removal and notification happen effectively once.
    - Flip, team removal, marker clearing and the audit row commit together
      in one SAVEPOINT.  A failure rolls all of them back and leaves the
      row ACTIVE for the next sweep.
    - Notification runs after that SAVEPOINT and never undoes an expiry.
    - Team membership is only revoked if the user holds no approver or
      production-head membership on the project and is not its manager.

Failure modes:
    - create/update/extend raise NotFound, InvalidState and
      ValidationFailure subclasses; store errors become
      StoreUnavailableError.
    - expire/remove report store errors as a FAILED DelegationResult.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.domain import delegation as rules
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import DelegationResult, TemporaryApproverRecord
from approval_kernel.domain.types import (
    DelegationAction,
    DelegationStatus,
    Membership,
    OperationStatus,
    UserRole,
)
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    DelegationAlreadyActiveError,
    DelegationNotActiveError,
    DelegationNotFoundError,
    InvalidDelegateError,
    InvalidDelegationWindowError,
    ProjectNotFoundError,
    StoreUnavailableError,
    UserNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.delegation_audit import DelegationAuditEventModel
from approval_kernel.models.project import ProjectMemberModel, ProjectModel
from approval_kernel.models.temporary_approver import TemporaryApproverModel
from approval_kernel.selectors.delegation_selector import DelegationSelector
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.selectors.user_selector import UserSelector
from approval_kernel.services.base import BaseService
from approval_kernel.services.notification_router import NotificationRouter

logger = get_logger("services.delegation_lifecycle")

SYSTEM_ACTOR = "System"

_RETAINING_MEMBERSHIPS = (Membership.APPROVER.value, Membership.PRODUCTION_HEAD.value)


class DelegationLifecycle(BaseService[TemporaryApproverModel]):
    """Owns every state change of a temporary-approver delegation."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        router: NotificationRouter | None = None,
        system_actor: str = SYSTEM_ACTOR,
    ):
        super().__init__(session, clock)
        self._router = router or NotificationRouter(session, self._clock)
        self._system_actor = system_actor
        self._delegations = DelegationSelector(session)
        self._projects = ProjectSelector(session)
        self._users = UserSelector(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, project_id: str, delegation_id: str) -> TemporaryApproverRecord:
        record = self._delegations.get(delegation_id)
        if record is None or record.project_id != project_id:
            raise DelegationNotFoundError(project_id, delegation_id)
        return record

    def history(self, project_id: str) -> list[TemporaryApproverRecord]:
        return self._delegations.list_for_project(project_id)

    def active(self, project_id: str) -> TemporaryApproverRecord | None:
        """The effective delegation (active and not past due), if any."""
        record = self._delegations.active_for_project(project_id)
        return record if rules.is_effective(record, self._clock.now()) else None

    def is_temporary_approver(self, project_id: str, user_id: str) -> bool:
        record = self.active(project_id)
        return record is not None and record.approver_id == user_id

    def remaining_days(self, record: TemporaryApproverRecord) -> int | None:
        return rules.remaining_days(record, self._clock.now())

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        project_id: str,
        approver_id: str,
        approver_name: str | None = None,
        approver_phone: str | None = None,
        start_date: datetime | None = None,
        expiring_date: datetime | None = None,
        assigned_by: str = "",
        assigned_by_name: str = "",
    ) -> TemporaryApproverRecord:
        """Create the project's single active delegation.

        Raises:
            ProjectNotFoundError, UserNotFoundError, InvalidDelegateError,
            InvalidDelegationWindowError, DelegationAlreadyActiveError,
            StoreUnavailableError.
        """
        now = self._clock.now()
        if start_date is not None:
            start = start_date
        elif expiring_date is not None and expiring_date < now:
            start = expiring_date
        else:
            start = now
        if not rules.validate_window(start, expiring_date):
            raise InvalidDelegationWindowError(start.isoformat(), expiring_date.isoformat())

        try:
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            delegate = self._validated_delegate(approver_id)

            for existing in self._delegations.list_active(project_id):
                if not rules.is_due(existing, now):
                    raise DelegationAlreadyActiveError(project_id, existing.id)
                outcome = self.expire(project_id, existing)
                if not outcome.success:
                    raise DelegationAlreadyActiveError(project_id, existing.id)

            savepoint = self.session.begin_nested()
            try:
                model = TemporaryApproverModel(
                    project_id=project_id,
                    approver_id=approver_id,
                    approver_name=approver_name or delegate.name,
                    approver_phone=approver_phone or delegate.phone,
                    assigned_by=assigned_by,
                    assigned_by_name=assigned_by_name,
                    start_date=start,
                    expiring_date=expiring_date,
                    is_active=True,
                    status=DelegationStatus.ACTIVE.value,
                    changed_by=assigned_by or None,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(model)
                self.session.flush()
                self._add_team_member(project_id, approver_id)
                self._set_marker(project_id, model.approver_phone, now)
                self._audit(model.id, project_id, DelegationAction.CREATED,
                            assigned_by or assigned_by_name or self._system_actor,
                            None, _snapshot(model.to_dto()), now)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                winner = self._delegations.active_for_project(project_id)
                raise DelegationAlreadyActiveError(
                    project_id, winner.id if winner else "unknown",
                )
            except SQLAlchemyError:
                savepoint.rollback()
                raise
        except SQLAlchemyError as exc:
            logger.error(
                "delegation_create_failed",
                extra={"project_id": project_id, "approver_id": approver_id},
                exc_info=True,
            )
            raise StoreUnavailableError("create_delegation", str(exc)) from exc

        record = model.to_dto()
        with LogContext.bind(project_id=project_id, delegation_id=record.id):
            logger.info(
                "delegation_created",
                extra={
                    "approver_id": approver_id,
                    "start_date": record.start_date,
                    "expiring_date": record.expiring_date,
                    "assigned_by": assigned_by,
                },
            )
        self._notify_safely(
            "delegation_assignment_notification_failed",
            lambda: self._router.notify_temporary_approver_assigned(record, project.name),
            record,
        )
        return record

    # ------------------------------------------------------------------
    # Update / extend
    # ------------------------------------------------------------------

    def update(
        self,
        project_id: str,
        updated: TemporaryApproverRecord,
        original: TemporaryApproverRecord,
        changed_by: str,
    ) -> TemporaryApproverRecord:
        """Edit dates and/or re-parent an active delegation.

        ``original`` is the version the caller read; the write is
        conditional on it still being current.

        Raises:
            DelegationNotFoundError, DelegationNotActiveError,
            ConcurrentModificationError, InvalidDelegateError,
            InvalidDelegationWindowError, StoreUnavailableError.
        """
        now = self._clock.now()
        try:
            current = self.get(project_id, original.id)
            if not rules.can_transition(rules.state_of(current), rules.DelegationState.ACTIVE):
                raise DelegationNotActiveError(current.id, current.status.value)
            if not rules.validate_window(updated.start_date, updated.expiring_date):
                raise InvalidDelegationWindowError(
                    updated.start_date.isoformat(), updated.expiring_date.isoformat(),
                )

            approver_changed = updated.approver_id != current.approver_id
            name, phone = updated.approver_name, updated.approver_phone
            if approver_changed:
                delegate = self._validated_delegate(updated.approver_id)
                name = name if name and name != current.approver_name else delegate.name
                phone = phone if phone and phone != current.approver_phone else delegate.phone

            savepoint = self.session.begin_nested()
            try:
                result = self.session.execute(
                    update(TemporaryApproverModel)
                    .where(
                        TemporaryApproverModel.id == original.id,
                        TemporaryApproverModel.is_active.is_(True),
                        TemporaryApproverModel.version == original.version,
                    )
                    .values(
                        approver_id=updated.approver_id,
                        approver_name=name,
                        approver_phone=phone,
                        start_date=updated.start_date,
                        expiring_date=updated.expiring_date,
                        changed_by=changed_by,
                        updated_at=now,
                        version=TemporaryApproverModel.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    savepoint.rollback()
                    latest = self.get(project_id, original.id)
                    if not latest.is_active:
                        raise DelegationNotActiveError(latest.id, latest.status.value)
                    raise ConcurrentModificationError("TemporaryApprover", original.id)

                if approver_changed:
                    self._remove_team_member(project_id, current.approver_id)
                    self._add_team_member(project_id, updated.approver_id)
                if approver_changed or phone != current.approver_phone:
                    self._set_marker(project_id, phone, now)

                after = self._delegations.get(original.id)
                self._audit(original.id, project_id, DelegationAction.UPDATED, changed_by,
                            _snapshot(current), _snapshot(after), now)
                self.session.flush()
                savepoint.commit()
            except SQLAlchemyError:
                savepoint.rollback()
                raise
        except SQLAlchemyError as exc:
            logger.error(
                "delegation_update_failed",
                extra={"project_id": project_id, "delegation_id": original.id},
                exc_info=True,
            )
            raise StoreUnavailableError("update_delegation", str(exc)) from exc

        with LogContext.bind(project_id=project_id, delegation_id=original.id):
            logger.info(
                "delegation_updated",
                extra={
                    "changed_by": changed_by,
                    "approver_changed": approver_changed,
                    "previous_approver_id": current.approver_id,
                    "approver_id": after.approver_id,
                    "expiring_date": after.expiring_date,
                },
            )
        return after

    def extend(
        self,
        project_id: str,
        delegation_id: str,
        new_expiring_date: datetime | None,
        changed_by: str,
    ) -> TemporaryApproverRecord:
        """Move (or clear) the expiring date of an active delegation."""
        current = self.get(project_id, delegation_id)
        updated = dataclasses.replace(current, expiring_date=new_expiring_date)
        return self.update(project_id, updated, current, changed_by)

    # ------------------------------------------------------------------
    # Deactivation
    # ------------------------------------------------------------------

    def expire(self, project_id: str, record: TemporaryApproverRecord) -> DelegationResult:
        """Automatic expiry.  The only path that sets status=EXPIRED as "System"."""
        return self._deactivate(project_id, record, self._system_actor, DelegationAction.EXPIRED)

    def remove(self, project_id: str, delegation_id: str, removed_by: str) -> DelegationResult:
        """Manual removal by a production head.  Same effects as expiry.

        Raises:
            DelegationNotFoundError: unknown id, or id of another project.
        """
        record = self.get(project_id, delegation_id)
        return self._deactivate(project_id, record, removed_by, DelegationAction.REMOVED)

    def _deactivate(
        self,
        project_id: str,
        record: TemporaryApproverRecord,
        actor: str,
        action: DelegationAction,
    ) -> DelegationResult:
        now = self._clock.now()
        with LogContext.bind(project_id=project_id, delegation_id=record.id):
            if not rules.can_transition(rules.state_of(record), rules.DelegationState.EXPIRED):
                return self._deactivation_noop(record.id, action, actor)
            savepoint = self.session.begin_nested()
            try:
                result = self.session.execute(
                    update(TemporaryApproverModel)
                    .where(
                        TemporaryApproverModel.id == record.id,
                        TemporaryApproverModel.is_active.is_(True),
                    )
                    .values(
                        is_active=False,
                        status=DelegationStatus.EXPIRED.value,
                        changed_by=actor,
                        updated_at=now,
                        version=TemporaryApproverModel.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    savepoint.rollback()
                    return self._deactivation_noop(record.id, action, actor)

                team_removed = self._remove_team_member(project_id, record.approver_id)
                self._set_marker(project_id, None, now)
                after = self._delegations.get(record.id)
                self._audit(record.id, project_id, action, actor,
                            _snapshot(record), _snapshot(after), now)
                self.session.flush()
                savepoint.commit()
            except SQLAlchemyError as exc:
                savepoint.rollback()
                logger.error(
                    "delegation_deactivation_failed",
                    extra={"action": action.value, "actor": actor},
                    exc_info=True,
                )
                return DelegationResult(
                    status=OperationStatus.FAILED,
                    delegation=record,
                    error_code=StoreUnavailableError.code,
                    message=f"Failed to deactivate delegation: {exc}",
                )

            logger.info(
                "delegation_expired" if action == DelegationAction.EXPIRED
                else "delegation_removed",
                extra={
                    "approver_id": record.approver_id,
                    "actor": actor,
                    "team_member_removed": team_removed,
                },
            )

            removed_by = None if action == DelegationAction.EXPIRED else actor
            self._notify_safely(
                "delegation_expiry_notification_failed",
                lambda: self._notify_ended(project_id, after, removed_by),
                after,
            )
        return DelegationResult(status=OperationStatus.SUCCESS, delegation=after)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deactivation_noop(
        self,
        delegation_id: str,
        action: DelegationAction,
        actor: str,
    ) -> DelegationResult:
        logger.info(
            "delegation_deactivation_noop",
            extra={"action": action.value, "actor": actor},
        )
        return DelegationResult(
            status=OperationStatus.NOOP,
            delegation=self._delegations.get(delegation_id),
            message="Delegation already inactive",
        )

    def _validated_delegate(self, approver_id: str):
        delegate = self._users.get(approver_id)
        if delegate is None:
            raise UserNotFoundError(approver_id)
        if delegate.role != UserRole.APPROVER or not delegate.is_active:
            raise InvalidDelegateError(approver_id, delegate.role.value)
        return delegate

    def _add_team_member(self, project_id: str, user_id: str) -> bool:
        existing = self.session.scalar(
            select(ProjectMemberModel.id).where(
                ProjectMemberModel.project_id == project_id,
                ProjectMemberModel.user_id == user_id,
                ProjectMemberModel.membership == Membership.TEAM.value,
            )
        )
        if existing is not None:
            return False
        self.session.add(ProjectMemberModel(
            project_id=project_id,
            user_id=user_id,
            membership=Membership.TEAM.value,
        ))
        self.session.flush()
        return True

    def _remove_team_member(self, project_id: str, user_id: str) -> bool:
        retaining = self.session.scalar(
            select(func.count(ProjectMemberModel.id)).where(
                ProjectMemberModel.project_id == project_id,
                ProjectMemberModel.user_id == user_id,
                ProjectMemberModel.membership.in_(_RETAINING_MEMBERSHIPS),
            )
        )
        manager_id = self.session.scalar(
            select(ProjectModel.manager_id).where(ProjectModel.id == project_id)
        )
        if retaining or manager_id == user_id:
            logger.info(
                "team_membership_retained",
                extra={"project_id": project_id, "user_id": user_id},
            )
            return False
        result = self.session.execute(
            delete(ProjectMemberModel)
            .where(
                ProjectMemberModel.project_id == project_id,
                ProjectMemberModel.user_id == user_id,
                ProjectMemberModel.membership == Membership.TEAM.value,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _set_marker(self, project_id: str, phone: str | None, now: datetime) -> None:
        self.session.execute(
            update(ProjectModel)
            .where(ProjectModel.id == project_id)
            .values(
                temporary_approver_phone=phone or None,
                updated_at=now,
                version=ProjectModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

    def _audit(
        self,
        delegation_id: str,
        project_id: str,
        action: DelegationAction,
        actor: str,
        before: dict | None,
        after: dict | None,
        now: datetime,
    ) -> None:
        self.session.add(DelegationAuditEventModel(
            delegation_id=delegation_id,
            project_id=project_id,
            action=action.value,
            actor=actor,
            occurred_at=now,
            before_state=before,
            after_state=after,
        ))

    def _notify_ended(
        self,
        project_id: str,
        record: TemporaryApproverRecord,
        removed_by: str | None,
    ) -> None:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        self._router.notify_delegation_ended(record, project, removed_by=removed_by)

    def _notify_safely(self, event: str, send, record: TemporaryApproverRecord) -> None:
        try:
            send()
        except Exception:
            logger.warning(
                event,
                extra={"project_id": record.project_id, "delegation_id": record.id},
                exc_info=True,
            )


def _snapshot(record: TemporaryApproverRecord | None) -> dict | None:
    if record is None:
        return None
    return {
        "approver_id": record.approver_id,
        "approver_name": record.approver_name,
        "approver_phone": record.approver_phone,
        "start_date": record.start_date.isoformat() if record.start_date else None,
        "expiring_date": record.expiring_date.isoformat() if record.expiring_date else None,
        "is_active": record.is_active,
        "status": record.status.value,
        "version": record.version,
    }
