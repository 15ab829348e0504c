"""
Two-session fixtures over a file-backed SQLite database.

Each session gets its own connection, so one session's uncommitted writes
are invisible to the other.  Tests interleave the sessions step by step and
commit between steps; SQLite allows a single writer at a time.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from approval_kernel.db.base import Base
from approval_kernel.db.engine import enable_sqlite_savepoints
from approval_kernel.domain.types import Membership, UserRole
from approval_kernel.models.project import (
    ProjectDepartmentBudgetModel,
    ProjectMemberModel,
    ProjectModel,
)
from approval_kernel.models.user import UserModel
from approval_kernel.services.delegation_lifecycle import DelegationLifecycle


@pytest.fixture
def file_engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'approval.db'}")
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_sessions(file_engine):
    """Factory for independent sessions; all are closed at teardown."""
    factory = sessionmaker(bind=file_engine, expire_on_commit=False)
    opened = []

    def _open():
        sess = factory()
        opened.append(sess)
        return sess

    yield _open

    for sess in opened:
        sess.rollback()
        sess.close()


@pytest.fixture
def seeded(file_sessions, clock):
    """Committed project with a head, two approvers and a delegation due in 1h."""
    session = file_sessions()
    head = UserModel(name="Head", phone="+910000000001", role=UserRole.PRODUCTION_HEAD.value)
    delegate = UserModel(name="Delegate", phone="+910000000002", role=UserRole.APPROVER.value)
    spare = UserModel(name="Spare", phone="+910000000003", role=UserRole.APPROVER.value)
    session.add_all([head, delegate, spare])
    project = ProjectModel(name="Alpha")
    session.add(project)
    session.flush()
    session.add(ProjectDepartmentBudgetModel(
        project_id=project.id, department="Marketing", allocated=Decimal("10000"),
    ))
    session.add(ProjectMemberModel(
        project_id=project.id, user_id=head.id,
        membership=Membership.PRODUCTION_HEAD.value,
    ))
    session.flush()
    record = DelegationLifecycle(session, clock).create(
        project.id, delegate.id, expiring_date=clock.now() + timedelta(hours=1),
    )
    session.commit()
    session.close()
    return {
        "project_id": project.id,
        "head": head.id,
        "delegate": delegate.id,
        "spare": spare.id,
        "delegation": record,
    }
