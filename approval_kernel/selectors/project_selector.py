"""Project reads: snapshots with budgets and memberships, and enumeration."""

from sqlalchemy import select

from approval_kernel.domain.dtos import ProjectSnapshot
from approval_kernel.models.project import (
    ProjectDepartmentBudgetModel,
    ProjectMemberModel,
    ProjectModel,
)
from approval_kernel.selectors.base import BaseSelector


class ProjectSelector(BaseSelector[ProjectModel]):
    """Every read goes to the database; memberships change out-of-band."""

    def get(self, project_id: str) -> ProjectSnapshot | None:
        if not project_id:
            return None
        model = self.session.get(ProjectModel, project_id, populate_existing=True)
        if model is None:
            return None
        budgets = self.session.execute(
            select(ProjectDepartmentBudgetModel.department, ProjectDepartmentBudgetModel.allocated)
            .where(ProjectDepartmentBudgetModel.project_id == project_id)
        )
        members = self.session.execute(
            select(ProjectMemberModel.user_id, ProjectMemberModel.membership)
            .where(ProjectMemberModel.project_id == project_id)
        )
        return model.to_dto(
            budgets={department: allocated for department, allocated in budgets},
            members=[(user_id, membership) for user_id, membership in members],
        )

    def list_ids(self) -> list[str]:
        """All project ids in stable order."""
        return list(
            self.session.scalars(select(ProjectModel.id).order_by(ProjectModel.id))
        )

    def memberships(self, project_id: str, user_id: str) -> set[str]:
        stmt = select(ProjectMemberModel.membership).where(
            ProjectMemberModel.project_id == project_id,
            ProjectMemberModel.user_id == user_id,
        )
        return set(self.session.scalars(stmt))
