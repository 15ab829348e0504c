"""User reads.  Role lookups are indexed queries, never a client-side scan."""

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select

from approval_kernel.domain.dtos import UserSnapshot
from approval_kernel.domain.types import UserRole
from approval_kernel.models.user import UserModel, UserProjectAssignmentModel
from approval_kernel.selectors.base import BaseSelector


class UserSelector(BaseSelector[UserModel]):

    def get(self, user_id: str) -> UserSnapshot | None:
        if not user_id:
            return None
        found = self._load(select(UserModel).where(UserModel.id == user_id))
        return found[0] if found else None

    def get_many(self, user_ids: Iterable[str]) -> dict[str, UserSnapshot]:
        ids = sorted({uid for uid in user_ids if uid})
        if not ids:
            return {}
        users = self._load(select(UserModel).where(UserModel.id.in_(ids)))
        return {u.uid: u for u in users}

    def by_role(self, role: UserRole, *, active_only: bool = True) -> list[UserSnapshot]:
        stmt = select(UserModel).where(UserModel.role == role.value)
        if active_only:
            stmt = stmt.where(UserModel.is_active.is_(True))
        return self._load(stmt)

    def _load(self, stmt) -> list[UserSnapshot]:
        models = list(
            self.session.scalars(
                stmt.order_by(UserModel.id).execution_options(populate_existing=True)
            )
        )
        if not models:
            return []
        assignments: dict[str, set[str]] = defaultdict(set)
        rows = self.session.execute(
            select(UserProjectAssignmentModel.user_id, UserProjectAssignmentModel.project_id)
            .where(UserProjectAssignmentModel.user_id.in_([m.id for m in models]))
        )
        for user_id, project_id in rows:
            assignments[user_id].add(project_id)
        return [m.to_dto(assignments.get(m.id, ())) for m in models]
