"""ORM models.  Importing this package registers every table on Base.metadata."""

from approval_kernel.models.delegation_audit import DelegationAuditEventModel
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.project import (
    ProjectDepartmentBudgetModel,
    ProjectMemberModel,
    ProjectModel,
)
from approval_kernel.models.temporary_approver import TemporaryApproverModel
from approval_kernel.models.user import UserModel, UserProjectAssignmentModel

__all__ = [
    "DelegationAuditEventModel",
    "ExpenseModel",
    "NotificationModel",
    "ProjectDepartmentBudgetModel",
    "ProjectMemberModel",
    "ProjectModel",
    "TemporaryApproverModel",
    "UserModel",
    "UserProjectAssignmentModel",
]
