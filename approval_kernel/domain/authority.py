"""
Authority resolution rules (``approval_kernel.domain.authority``).

Responsibility
--------------
Pure decisions behind AuthorityResolver: which users on a project hold
approval authority, and whether a given user may see or act on a project.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  The resolver service loads snapshots
and applies the fallback query; these functions only combine them.

Invariants enforced
-------------------
* Role is re-validated at resolution time: an id listed as approver whose
  user no longer has role APPROVER grants nothing.
* The manager counts as an approver only if their role is APPROVER.
* An effective delegation (active, not due) adds its approver.
* ``is_user_assigned_to_project`` treats a due-but-unswept delegation as
  inactive.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from approval_kernel.domain.delegation import is_effective
from approval_kernel.domain.dtos import (
    Authority,
    ProjectSnapshot,
    TemporaryApproverRecord,
    UserSnapshot,
)
from approval_kernel.domain.types import AuthoritySource, UserRole


def _with_role(
    ids: frozenset[str],
    users_by_id: Mapping[str, UserSnapshot],
    role: UserRole,
) -> set[str]:
    return {
        uid for uid in ids
        if uid and uid in users_by_id and users_by_id[uid].role == role
    }


def explicit_authority(
    project: ProjectSnapshot,
    users_by_id: Mapping[str, UserSnapshot],
) -> tuple[frozenset[str], frozenset[str]]:
    """Role-validated approvers (plus manager) and production heads."""
    approvers = _with_role(project.approver_ids, users_by_id, UserRole.APPROVER)
    manager = project.manager_id
    if (
        manager
        and manager not in approvers
        and manager in users_by_id
        and users_by_id[manager].role == UserRole.APPROVER
    ):
        approvers.add(manager)
    heads = _with_role(
        project.production_head_ids, users_by_id, UserRole.PRODUCTION_HEAD
    )
    return frozenset(approvers), frozenset(heads)


def merge_delegation(
    project_id: str,
    approvers: frozenset[str],
    heads: frozenset[str],
    source: AuthoritySource,
    delegation: TemporaryApproverRecord | None,
    now: datetime,
) -> Authority:
    delegated = None
    if is_effective(delegation, now) and delegation.approver_id:
        delegated = delegation.approver_id
        approvers = approvers | {delegated}
    return Authority(
        project_id=project_id,
        approver_ids=approvers,
        production_head_ids=heads,
        source=source,
        delegated_approver_id=delegated,
    )


def is_user_assigned_to_project(
    user: UserSnapshot,
    project: ProjectSnapshot,
    delegation: TemporaryApproverRecord | None,
    now: datetime,
) -> bool:
    """Role-dependent access gate for a single project."""
    if user.role == UserRole.ADMIN:
        return True
    if user.role == UserRole.USER:
        return project.id in user.assigned_projects
    if user.role == UserRole.PRODUCTION_HEAD:
        return user.uid in project.production_head_ids
    if user.role == UserRole.APPROVER:
        if user.uid in project.approver_ids or user.uid == project.manager_id:
            return True
        return is_effective(delegation, now) and delegation.approver_id == user.uid
    return False
