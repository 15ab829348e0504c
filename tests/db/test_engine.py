"""
Tests for approval_kernel.db.engine -- engine setup, session scope and
SQLite SAVEPOINT handling.
"""

import pytest
from sqlalchemy import func, select

from approval_kernel.db import engine as db_engine
from approval_kernel.models.project import ProjectModel


@pytest.fixture
def memory_engine():
    eng = db_engine.init_engine_from_url("sqlite://")
    db_engine.create_tables()
    yield eng
    db_engine.reset_engine()


def _project_count(session) -> int:
    return session.scalar(select(func.count()).select_from(ProjectModel))


class TestInitialization:

    def test_accessors_fail_before_init(self):
        db_engine.reset_engine()
        with pytest.raises(RuntimeError):
            db_engine.get_engine()
        with pytest.raises(RuntimeError):
            db_engine.get_session_factory()

    def test_sqlite_memory_engine(self, memory_engine):
        assert db_engine.get_engine() is memory_engine
        assert memory_engine.dialect.name == "sqlite"

    def test_drop_tables(self, memory_engine):
        db_engine.drop_tables()
        db_engine.create_tables()
        with db_engine.session_scope() as session:
            assert _project_count(session) == 0


class TestSessionScope:

    def test_commits_on_success(self, memory_engine):
        with db_engine.session_scope() as session:
            session.add(ProjectModel(name="Alpha"))

        with db_engine.session_scope() as session:
            assert _project_count(session) == 1

    def test_rolls_back_and_reraises(self, memory_engine):
        with pytest.raises(ValueError):
            with db_engine.session_scope() as session:
                session.add(ProjectModel(name="Alpha"))
                session.flush()
                raise ValueError("abort")

        with db_engine.session_scope() as session:
            assert _project_count(session) == 0


class TestSavepoints:

    def test_savepoint_rollback_keeps_outer_work(self, memory_engine):
        with db_engine.session_scope() as session:
            session.add(ProjectModel(name="Kept"))
            session.flush()
            savepoint = session.begin_nested()
            session.add(ProjectModel(name="Discarded"))
            session.flush()
            savepoint.rollback()

        with db_engine.session_scope() as session:
            names = list(session.scalars(select(ProjectModel.name)))
        assert names == ["Kept"]

    def test_outer_rollback_discards_released_savepoint(self, memory_engine):
        session = db_engine.get_session()
        try:
            savepoint = session.begin_nested()
            session.add(ProjectModel(name="Inner"))
            session.flush()
            savepoint.commit()
            session.rollback()
            assert _project_count(session) == 0
        finally:
            session.close()
