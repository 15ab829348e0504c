"""
Pytest fixtures for the approval engine test suite.

Provides:
- In-memory SQLite engine (StaticPool, real SAVEPOINTs) per test
- DeterministicClock and a recording push transport
- Factory fixtures for users, projects, budgets, memberships and expenses
- Structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import approval_kernel.models  # noqa: F401
from approval_config import get_active_config
from approval_kernel.db.base import Base
from approval_kernel.db.engine import enable_sqlite_savepoints
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.types import ExpenseStatus, Membership, UserRole
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.project import (
    ProjectDepartmentBudgetModel,
    ProjectMemberModel,
    ProjectModel,
)
from approval_kernel.models.user import UserModel, UserProjectAssignmentModel
from approval_kernel.services.authority_resolver import AuthorityResolver
from approval_kernel.services.budget_ledger import BudgetLedger
from approval_kernel.services.delegation_lifecycle import DelegationLifecycle
from approval_kernel.services.expense_service import ExpenseService
from approval_kernel.services.expiry_sweeper import ExpirySweeper
from approval_kernel.services.notification_router import NotificationRouter
from approval_services import ApprovalWorkflow

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    register_immutability_listeners()
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, sweeper):
            sweeper.sweep()
            assert any(r["message"] == "sweep_completed" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def clock():
    return DeterministicClock(T0)


# =============================================================================
# Collaborators
# =============================================================================


class RecordingPushTransport:
    """PushTransport double that records every send."""

    def __init__(self, device_token: str | None = "device-token-1"):
        self.sent: list[dict] = []
        self.device_token = device_token
        self.fail_tokens: set[str] = set()
        self.raise_tokens: set[str] = set()

    def send_push(self, token, title, body, data):
        if token in self.raise_tokens:
            raise ConnectionError(f"push gateway unreachable for {token}")
        if token in self.fail_tokens:
            return False
        self.sent.append({"token": token, "title": title, "body": body, "data": dict(data)})
        return True

    def get_current_device_token(self):
        return self.device_token

    def tokens(self) -> list[str]:
        return [s["token"] for s in self.sent]


@pytest.fixture
def push():
    return RecordingPushTransport()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_user(session):
    """Factory fixture: create a user and return its id."""
    counter = {"n": 0}

    def _create(
        role=UserRole.USER,
        *,
        name=None,
        phone=None,
        is_active=True,
        device_token=None,
        assigned_projects=(),
        **preferences,
    ):
        counter["n"] += 1
        n = counter["n"]
        user = UserModel(
            name=name or f"{role.value.title()} {n}",
            phone=phone or f"+9100000{n:05d}",
            role=role.value,
            is_active=is_active,
            device_token=device_token,
            **{f"pref_{key}": value for key, value in preferences.items()},
        )
        session.add(user)
        session.flush()
        for project_id in assigned_projects:
            session.add(UserProjectAssignmentModel(user_id=user.id, project_id=project_id))
        session.flush()
        return user.id

    return _create


@pytest.fixture
def add_member(session):
    def _add(project_id, user_id, membership):
        session.add(ProjectMemberModel(
            project_id=project_id, user_id=user_id, membership=membership.value,
        ))
        session.flush()

    return _add


@pytest.fixture
def make_project(session, add_member):
    """Factory fixture: create a project with budgets and memberships."""

    def _create(
        name="Alpha",
        *,
        budgets=None,
        approvers=(),
        heads=(),
        team=(),
        manager_id=None,
    ):
        project = ProjectModel(name=name, manager_id=manager_id)
        session.add(project)
        session.flush()
        for department, allocated in (budgets or {}).items():
            session.add(ProjectDepartmentBudgetModel(
                project_id=project.id, department=department, allocated=Decimal(allocated),
            ))
        for uid in approvers:
            add_member(project.id, uid, Membership.APPROVER)
        for uid in heads:
            add_member(project.id, uid, Membership.PRODUCTION_HEAD)
        for uid in team:
            add_member(project.id, uid, Membership.TEAM)
        session.flush()
        return project.id

    return _create


@pytest.fixture
def add_expense(session, clock):
    """Factory fixture: insert an expense directly with a given status."""

    def _add(project_id, department, amount, status=ExpenseStatus.APPROVED, *,
             category="General", submitted_by="user-x"):
        expense = ExpenseModel(
            project_id=project_id,
            department=department,
            category=category,
            amount=Decimal(amount),
            status=status.value,
            submitted_by_user_id=submitted_by,
            submitted_by_name="Submitter",
            submitted_at=clock.now(),
        )
        session.add(expense)
        session.flush()
        return expense.id

    return _add


@pytest.fixture
def team_of(session):
    """Team-membership ids of a project, read straight from the table."""

    def _team(project_id):
        return set(session.scalars(
            select(ProjectMemberModel.user_id).where(
                ProjectMemberModel.project_id == project_id,
                ProjectMemberModel.membership == Membership.TEAM.value,
            )
        ))

    return _team


@pytest.fixture
def notifications_of(session):
    """Persisted notification rows, optionally filtered by type."""

    def _rows(notification_type=None, project_id=None):
        stmt = select(NotificationModel).order_by(NotificationModel.created_at)
        if notification_type is not None:
            stmt = stmt.where(NotificationModel.type == notification_type.value)
        if project_id is not None:
            stmt = stmt.where(NotificationModel.project_id == project_id)
        return list(session.scalars(stmt))

    return _rows


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def authority(session, clock):
    return AuthorityResolver(session, clock)


@pytest.fixture
def router(session, clock, authority, push):
    return NotificationRouter(session, clock, authority=authority, push_transport=push)


@pytest.fixture
def ledger(session, clock):
    return BudgetLedger(session, clock)


@pytest.fixture
def lifecycle(session, clock, router):
    return DelegationLifecycle(session, clock, router=router)


@pytest.fixture
def sweeper(session, clock, lifecycle):
    return ExpirySweeper(session, clock, lifecycle=lifecycle)


@pytest.fixture
def expense_service(session, clock, ledger, authority, router):
    return ExpenseService(session, clock, ledger=ledger, authority=authority, router=router)


@pytest.fixture
def workflow(session, clock, push):
    return ApprovalWorkflow(session, clock=clock, config=get_active_config(), push_transport=push)


@pytest.fixture
def delegation_setup(make_user, make_project):
    """A project with one production head, one approver and one spare approver."""
    head = make_user(UserRole.PRODUCTION_HEAD, name="Head", device_token="tok-head")
    approver = make_user(UserRole.APPROVER, name="Regular Approver")
    delegate = make_user(UserRole.APPROVER, name="Delegate", phone="+919999900001",
                         device_token="tok-delegate")
    project_id = make_project(
        "Alpha", budgets={"Marketing": "10000"}, approvers=[approver], heads=[head],
    )
    return {
        "project_id": project_id,
        "head": head,
        "approver": approver,
        "delegate": delegate,
    }
