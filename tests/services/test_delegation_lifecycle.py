"""
Tests for DelegationLifecycle -- temporary approver create/update/expire/remove.

Covers:
- create(): side effects (team, marker, audit, notification), single active
  delegation, replacing a due-but-unswept one, validation errors
- update()/extend(): re-parenting, optimistic version check, expired rows
- remove()/expire(): compare-and-set, NOOP on repeat, atomic rollback,
  team retention, notification failures never undo an expiry
- The domain transition table gates both edits and deactivation
- Queries: active(), is_temporary_approver(), remaining_days(), history()
"""

import dataclasses
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from approval_kernel.domain import delegation as rules
from approval_kernel.domain.types import (
    DelegationAction,
    DelegationStatus,
    NotificationType,
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
    UserNotFoundError,
)
from approval_kernel.selectors.delegation_selector import DelegationSelector
from approval_kernel.selectors.project_selector import ProjectSelector


@pytest.fixture
def marker_of(session):
    def _marker(project_id):
        return ProjectSelector(session).get(project_id).temporary_approver_phone

    return _marker


@pytest.fixture
def audit_actions(session):
    def _actions(delegation_id):
        return [e.action for e in DelegationSelector(session).audit_trail(delegation_id)]

    return _actions


class TestCreate:

    def test_side_effects(
        self, lifecycle, delegation_setup, clock, team_of, marker_of, audit_actions,
        notifications_of, push,
    ):
        s = delegation_setup
        expiring = clock.now() + timedelta(days=3)

        record = lifecycle.create(
            s["project_id"], s["delegate"], expiring_date=expiring,
            assigned_by=s["head"], assigned_by_name="Head",
        )

        assert record.is_active
        assert record.status == DelegationStatus.ACTIVE
        assert record.approver_name == "Delegate"
        assert record.approver_phone == "+919999900001"
        assert record.start_date == clock.now()
        assert record.expiring_date == expiring
        assert record.version == 1
        assert s["delegate"] in team_of(s["project_id"])
        assert marker_of(s["project_id"]) == "+919999900001"
        assert audit_actions(record.id) == [DelegationAction.CREATED.value]

        rows = notifications_of(NotificationType.TEMPORARY_APPROVER_ASSIGNMENT)
        assert [row.recipient_id for row in rows] == [s["delegate"]]
        assert rows[0].navigation_target == f"approver_project_dashboard/{s['project_id']}"
        assert "tok-delegate" in push.tokens()

    def test_second_active_delegation_is_refused(
        self, lifecycle, delegation_setup, make_user,
    ):
        s = delegation_setup
        first = lifecycle.create(s["project_id"], s["delegate"])
        other = make_user(UserRole.APPROVER)

        with pytest.raises(DelegationAlreadyActiveError) as exc_info:
            lifecycle.create(s["project_id"], other)

        assert exc_info.value.existing_delegation_id == first.id

    def test_due_delegation_is_replaced(
        self, lifecycle, delegation_setup, make_user, clock, team_of,
    ):
        s = delegation_setup
        old = lifecycle.create(s["project_id"], s["delegate"],
                               expiring_date=clock.now() + timedelta(hours=1))
        clock.advance_hours(2)
        replacement = make_user(UserRole.APPROVER)

        new = lifecycle.create(s["project_id"], replacement)

        assert lifecycle.get(s["project_id"], old.id).status == DelegationStatus.EXPIRED
        assert lifecycle.active(s["project_id"]).id == new.id
        assert team_of(s["project_id"]) == {replacement}

    def test_already_past_expiry_is_accepted(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        expiring = clock.now() - timedelta(seconds=1)

        record = lifecycle.create(s["project_id"], s["delegate"], expiring_date=expiring)

        assert record.is_active
        assert record.start_date == expiring
        assert lifecycle.active(s["project_id"]) is None

    @pytest.mark.parametrize("role", [UserRole.USER, UserRole.PRODUCTION_HEAD, UserRole.ADMIN])
    def test_delegate_must_be_approver(self, lifecycle, delegation_setup, make_user, role):
        s = delegation_setup
        with pytest.raises(InvalidDelegateError):
            lifecycle.create(s["project_id"], make_user(role))

    def test_inactive_approver_is_refused(self, lifecycle, delegation_setup, make_user):
        s = delegation_setup
        with pytest.raises(InvalidDelegateError):
            lifecycle.create(s["project_id"], make_user(UserRole.APPROVER, is_active=False))

    def test_unknown_user_and_project(self, lifecycle, delegation_setup):
        s = delegation_setup
        with pytest.raises(UserNotFoundError):
            lifecycle.create(s["project_id"], "ghost")
        with pytest.raises(ProjectNotFoundError):
            lifecycle.create("missing", s["delegate"])

    def test_expiring_before_start(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        with pytest.raises(InvalidDelegationWindowError):
            lifecycle.create(
                s["project_id"], s["delegate"],
                start_date=clock.now() + timedelta(days=2),
                expiring_date=clock.now() + timedelta(days=1),
            )


class TestUpdate:

    def test_reparent(
        self, lifecycle, delegation_setup, make_user, clock, team_of, marker_of,
        audit_actions,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        successor = make_user(UserRole.APPROVER, name="Successor", phone="+919999900002")
        clock.advance(60)

        updated = lifecycle.update(
            s["project_id"],
            dataclasses.replace(record, approver_id=successor),
            record,
            changed_by=s["head"],
        )

        assert updated.approver_id == successor
        assert updated.approver_name == "Successor"
        assert updated.approver_phone == "+919999900002"
        assert updated.version == 2
        assert updated.changed_by == s["head"]
        assert team_of(s["project_id"]) == {successor}
        assert marker_of(s["project_id"]) == "+919999900002"
        assert audit_actions(record.id) == [
            DelegationAction.CREATED.value, DelegationAction.UPDATED.value,
        ]

    def test_stale_version_is_refused(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        lifecycle.extend(s["project_id"], record.id, clock.now() + timedelta(days=1), s["head"])

        with pytest.raises(ConcurrentModificationError):
            lifecycle.update(
                s["project_id"],
                dataclasses.replace(record, expiring_date=clock.now() + timedelta(days=9)),
                record,
                changed_by=s["head"],
            )

    def test_expired_delegation_cannot_be_edited(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        lifecycle.remove(s["project_id"], record.id, removed_by=s["head"])

        with pytest.raises(DelegationNotActiveError):
            lifecycle.extend(s["project_id"], record.id,
                             clock.now() + timedelta(days=1), s["head"])

    def test_extend_and_clear(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"],
                                  expiring_date=clock.now() + timedelta(days=1))

        later = lifecycle.extend(s["project_id"], record.id,
                                 clock.now() + timedelta(days=10), s["head"])
        assert lifecycle.remaining_days(later) == 10

        open_ended = lifecycle.extend(s["project_id"], record.id, None, s["head"])
        assert open_ended.expiring_date is None
        assert lifecycle.remaining_days(open_ended) is None
        assert open_ended.version == 3

    def test_window_is_validated(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        with pytest.raises(InvalidDelegationWindowError):
            lifecycle.extend(s["project_id"], record.id,
                             clock.now() - timedelta(days=1), s["head"])


class TestRemoveAndExpire:

    def test_remove(
        self, lifecycle, delegation_setup, team_of, marker_of, audit_actions,
        notifications_of, clock,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        clock.advance(60)

        result = lifecycle.remove(s["project_id"], record.id, removed_by="Head")

        assert result.status == OperationStatus.SUCCESS
        assert result.delegation.status == DelegationStatus.EXPIRED
        assert result.delegation.changed_by == "Head"
        assert not result.delegation.is_active
        assert s["delegate"] not in team_of(s["project_id"])
        assert marker_of(s["project_id"]) is None
        assert audit_actions(record.id)[-1] == DelegationAction.REMOVED.value

        rows = notifications_of(NotificationType.DELEGATION_EXPIRED)
        assert {row.recipient_id for row in rows} == {s["delegate"], s["head"]}
        assert all("was removed by Head" in row.message for row in rows)

    def test_remove_unknown_or_foreign(self, lifecycle, delegation_setup, make_project):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        other = make_project("Other")

        with pytest.raises(DelegationNotFoundError):
            lifecycle.remove(s["project_id"], "nope", removed_by="Head")
        with pytest.raises(DelegationNotFoundError):
            lifecycle.remove(other, record.id, removed_by="Head")

    def test_expire_twice_is_noop(self, lifecycle, delegation_setup, notifications_of):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])

        first = lifecycle.expire(s["project_id"], record)
        second = lifecycle.expire(s["project_id"], record)

        assert first.status == OperationStatus.SUCCESS
        assert first.delegation.changed_by == "System"
        assert second.status == OperationStatus.NOOP
        assert second.success
        delegate_rows = [
            row for row in notifications_of(NotificationType.DELEGATION_EXPIRED)
            if row.recipient_id == s["delegate"]
        ]
        assert len(delegate_rows) == 1
        assert "has expired" in delegate_rows[0].message

    def test_expired_record_in_hand_skips_the_write(
        self, lifecycle, delegation_setup, audit_actions, captured_logs,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        expired = lifecycle.expire(s["project_id"], record).delegation

        again = lifecycle.remove(s["project_id"], expired.id, removed_by=s["head"])

        assert again.status == OperationStatus.NOOP
        assert again.delegation.changed_by == "System"
        assert audit_actions(record.id) == [
            DelegationAction.CREATED.value, DelegationAction.EXPIRED.value,
        ]
        noop = next(r for r in captured_logs() if r["message"] == "delegation_deactivation_noop")
        assert noop["action"] == DelegationAction.REMOVED.value

    def test_transition_table_gates_deactivation(
        self, lifecycle, delegation_setup, monkeypatch,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        monkeypatch.setitem(
            rules.DELEGATION_TRANSITIONS,
            rules.DelegationState.ACTIVE,
            frozenset({rules.DelegationState.ACTIVE}),
        )

        result = lifecycle.expire(s["project_id"], record)

        assert result.status == OperationStatus.NOOP
        assert lifecycle.get(s["project_id"], record.id).is_active

    def test_transition_table_gates_edits(
        self, lifecycle, delegation_setup, clock, monkeypatch,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])
        monkeypatch.setitem(
            rules.DELEGATION_TRANSITIONS, rules.DelegationState.ACTIVE, frozenset(),
        )

        with pytest.raises(DelegationNotActiveError):
            lifecycle.extend(s["project_id"], record.id,
                             clock.now() + timedelta(days=1), s["head"])

    def test_failure_rolls_back_every_effect(
        self, lifecycle, delegation_setup, team_of, marker_of, audit_actions, monkeypatch,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE projects", {}, Exception("database is locked"))

        monkeypatch.setattr(lifecycle, "_set_marker", broken)
        result = lifecycle.expire(s["project_id"], record)

        assert result.status == OperationStatus.FAILED
        assert result.error_code == "STORE_UNAVAILABLE"
        assert lifecycle.get(s["project_id"], record.id).is_active
        assert s["delegate"] in team_of(s["project_id"])
        assert marker_of(s["project_id"]) == "+919999900001"
        assert audit_actions(record.id) == [DelegationAction.CREATED.value]

    def test_listed_approver_keeps_team_membership(
        self, lifecycle, make_user, make_project, team_of,
    ):
        delegate = make_user(UserRole.APPROVER)
        project_id = make_project("Alpha", approvers=[delegate], team=[delegate])
        record = lifecycle.create(project_id, delegate)

        lifecycle.expire(project_id, record)

        assert delegate in team_of(project_id)

    def test_manager_keeps_team_membership(self, lifecycle, make_user, make_project, team_of):
        manager = make_user(UserRole.APPROVER)
        project_id = make_project("Alpha", manager_id=manager)
        record = lifecycle.create(project_id, manager)

        lifecycle.expire(project_id, record)

        assert manager in team_of(project_id)

    def test_notification_failure_keeps_expiry(
        self, lifecycle, delegation_setup, monkeypatch, captured_logs,
    ):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"])

        def broken(*args, **kwargs):
            raise RuntimeError("notification store down")

        monkeypatch.setattr(lifecycle._router, "notify_delegation_ended", broken)
        result = lifecycle.expire(s["project_id"], record)

        assert result.status == OperationStatus.SUCCESS
        assert not lifecycle.get(s["project_id"], record.id).is_active
        assert any(
            r["message"] == "delegation_expiry_notification_failed" for r in captured_logs()
        )


class TestQueries:

    def test_active_and_is_temporary_approver(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        assert lifecycle.active(s["project_id"]) is None

        lifecycle.create(s["project_id"], s["delegate"],
                         expiring_date=clock.now() + timedelta(hours=5))

        assert lifecycle.is_temporary_approver(s["project_id"], s["delegate"])
        assert not lifecycle.is_temporary_approver(s["project_id"], s["approver"])
        clock.advance_hours(6)
        assert lifecycle.active(s["project_id"]) is None
        assert not lifecycle.is_temporary_approver(s["project_id"], s["delegate"])

    def test_remaining_days(self, lifecycle, delegation_setup, clock):
        s = delegation_setup
        record = lifecycle.create(s["project_id"], s["delegate"],
                                  expiring_date=clock.now() + timedelta(days=2, hours=3))
        assert lifecycle.remaining_days(record) == 2
        clock.advance_hours(72)
        assert lifecycle.remaining_days(record) == 0

    def test_history_keeps_expired_rows(self, lifecycle, delegation_setup, make_user, clock):
        s = delegation_setup
        first = lifecycle.create(s["project_id"], s["delegate"])
        lifecycle.remove(s["project_id"], first.id, removed_by="Head")
        clock.advance(1)
        second = lifecycle.create(s["project_id"], make_user(UserRole.APPROVER))

        history = lifecycle.history(s["project_id"])

        assert [r.id for r in history] == [first.id, second.id]
        assert [r.status for r in history] == [DelegationStatus.EXPIRED, DelegationStatus.ACTIVE]
