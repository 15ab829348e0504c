"""
Delegation reads: history, the current active row, and the sweep's
due query.

The due query selects active rows with a non-null expiring date in SQL and
applies the strict ``now > expiring_date`` test in Python, so open-ended
delegations can never be returned.
"""

from datetime import datetime

from sqlalchemy import select

from approval_kernel.domain.delegation import is_due
from approval_kernel.domain.dtos import TemporaryApproverRecord
from approval_kernel.models.delegation_audit import DelegationAuditEventModel
from approval_kernel.models.temporary_approver import TemporaryApproverModel
from approval_kernel.selectors.base import BaseSelector


class DelegationSelector(BaseSelector[TemporaryApproverModel]):

    def get(self, delegation_id: str) -> TemporaryApproverRecord | None:
        if not delegation_id:
            return None
        model = self.session.get(
            TemporaryApproverModel, delegation_id, populate_existing=True,
        )
        return model.to_dto() if model is not None else None

    def list_for_project(self, project_id: str) -> list[TemporaryApproverRecord]:
        """Full history, oldest first, including expired rows."""
        stmt = (
            select(TemporaryApproverModel)
            .where(TemporaryApproverModel.project_id == project_id)
            .order_by(TemporaryApproverModel.created_at, TemporaryApproverModel.id)
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def list_active(self, project_id: str) -> list[TemporaryApproverRecord]:
        stmt = (
            select(TemporaryApproverModel)
            .where(
                TemporaryApproverModel.project_id == project_id,
                TemporaryApproverModel.is_active.is_(True),
            )
            .order_by(TemporaryApproverModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def active_for_project(self, project_id: str) -> TemporaryApproverRecord | None:
        """The active row, whether or not it is already due."""
        active = self.list_active(project_id)
        return active[0] if active else None

    def list_due(self, project_id: str, now: datetime) -> list[TemporaryApproverRecord]:
        stmt = (
            select(TemporaryApproverModel)
            .where(
                TemporaryApproverModel.project_id == project_id,
                TemporaryApproverModel.is_active.is_(True),
                TemporaryApproverModel.expiring_date.is_not(None),
            )
            .order_by(TemporaryApproverModel.expiring_date)
            .execution_options(populate_existing=True)
        )
        records = [m.to_dto() for m in self.session.scalars(stmt)]
        return [r for r in records if is_due(r, now)]

    def audit_trail(self, delegation_id: str) -> list[DelegationAuditEventModel]:
        stmt = (
            select(DelegationAuditEventModel)
            .where(DelegationAuditEventModel.delegation_id == delegation_id)
            .order_by(DelegationAuditEventModel.occurred_at, DelegationAuditEventModel.id)
        )
        return list(self.session.scalars(stmt))
