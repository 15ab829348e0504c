"""
ORM-level immutability and structural constraints.

Notifications and delegation audit events are append-only.  Delegation rows
are never deleted and freeze once EXPIRED.  Decided expenses are terminal;
only ``updated_at`` may change on them.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from approval_kernel.domain.types import DelegationStatus, ExpenseStatus
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.delegation_audit import DelegationAuditEventModel
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.temporary_approver import TemporaryApproverModel


@pytest.fixture
def notification(session, clock):
    model = NotificationModel(
        recipient_id="user-1",
        recipient_role="APPROVER",
        title="New Expense Submitted",
        message="Asha submitted an expense",
        type="EXPENSE_SUBMITTED",
        created_at=clock.now(),
    )
    session.add(model)
    session.flush()
    return model


@pytest.fixture
def audit_event(session, clock):
    model = DelegationAuditEventModel(
        delegation_id="delegation-1",
        project_id="project-1",
        action="CREATED",
        actor="Head",
        occurred_at=clock.now(),
        after_state={"approver_id": "user-2"},
    )
    session.add(model)
    session.flush()
    return model


@pytest.fixture
def delegation(lifecycle, delegation_setup, clock):
    s = delegation_setup
    return lifecycle.create(s["project_id"], s["delegate"],
                            expiring_date=clock.now() + timedelta(hours=1))


def _load(session, model_cls, entity_id):
    return session.get(model_cls, entity_id, populate_existing=True)


class TestAppendOnly:

    def test_notification_update_blocked(self, session, notification):
        notification.message = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_notification_delete_blocked(self, session, notification):
        session.delete(notification)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_event_update_blocked(self, session, audit_event):
        audit_event.actor = "Someone else"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_event_delete_blocked(self, session, audit_event):
        session.delete(audit_event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_is_logged(self, session, notification, captured_logs):
        notification.title = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["entity_type"] == "Notification"
        assert blocked[0]["operation"] == "UPDATE"


class TestDelegationRows:

    def test_delete_blocked_even_when_active(self, session, delegation):
        session.delete(_load(session, TemporaryApproverModel, delegation.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_active_row_may_change(self, session, delegation):
        model = _load(session, TemporaryApproverModel, delegation.id)
        model.approver_name = "Renamed"
        session.flush()
        assert _load(session, TemporaryApproverModel, delegation.id).approver_name == "Renamed"

    def test_expired_row_is_frozen(self, session, lifecycle, delegation, clock):
        clock.advance_hours(2)
        lifecycle.expire(delegation.project_id, delegation)
        model = _load(session, TemporaryApproverModel, delegation.id)
        assert model.status == DelegationStatus.EXPIRED.value

        model.is_active = True
        model.status = DelegationStatus.ACTIVE.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_expired_row_accepts_updated_at(self, session, lifecycle, delegation, clock):
        clock.advance_hours(2)
        lifecycle.expire(delegation.project_id, delegation)
        model = _load(session, TemporaryApproverModel, delegation.id)

        model.updated_at = clock.now() + timedelta(minutes=5)
        session.flush()

    def test_second_active_row_violates_unique_index(self, session, delegation, clock):
        session.add(TemporaryApproverModel(
            project_id=delegation.project_id,
            approver_id="someone-else",
            start_date=clock.now(),
            is_active=True,
            status=DelegationStatus.ACTIVE.value,
        ))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_inconsistent_state_violates_check(self, session, delegation_setup, clock):
        session.add(TemporaryApproverModel(
            project_id=delegation_setup["project_id"],
            approver_id="someone",
            start_date=clock.now(),
            is_active=False,
            status=DelegationStatus.ACTIVE.value,
        ))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_to_dto_keeps_utc(self, delegation, clock):
        assert delegation.expiring_date == clock.now() + timedelta(hours=1)
        assert delegation.expiring_date.tzinfo is not None
        assert delegation.version == 1


class TestExpenses:

    def test_pending_expense_may_change(self, session, delegation_setup, add_expense):
        expense_id = add_expense(delegation_setup["project_id"], "Marketing", "100",
                                 ExpenseStatus.PENDING)
        model = _load(session, ExpenseModel, expense_id)
        model.amount = Decimal("150")
        session.flush()

    @pytest.mark.parametrize("status", [ExpenseStatus.APPROVED, ExpenseStatus.REJECTED])
    def test_decided_expense_is_terminal(self, session, delegation_setup, add_expense, status):
        expense_id = add_expense(delegation_setup["project_id"], "Marketing", "100", status)
        model = _load(session, ExpenseModel, expense_id)
        model.status = ExpenseStatus.PENDING.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_decided_expense_accepts_updated_at(
        self, session, delegation_setup, add_expense, clock,
    ):
        expense_id = add_expense(delegation_setup["project_id"], "Marketing", "100")
        model = _load(session, ExpenseModel, expense_id)
        model.updated_at = clock.now() + timedelta(minutes=1)
        session.flush()

    def test_non_positive_amount_violates_check(self, session, delegation_setup, add_expense):
        with pytest.raises(IntegrityError):
            add_expense(delegation_setup["project_id"], "Marketing", "0",
                        ExpenseStatus.PENDING)
