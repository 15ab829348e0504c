"""
AuthorityResolver -- who may approve on a project, right now.

Responsibility:
    Resolves the current approval authority of a project (role-validated
    approvers, manager-as-approver, production heads, and the effective
    temporary approver) and answers the per-user access question
    ``is_user_assigned_to_project``.

Architecture position:
    Kernel > Services.  Reads through selectors; pure rules live in
    ``domain.authority``.  Never writes.

Invariants enforced:
    - Fallback: if both explicit sets are empty, widen to every active user
      with role APPROVER / PRODUCTION_HEAD and tag source="fallback".  The
      fallback is a misconfiguration signal and is logged at WARNING.
    - The delegated approver is merged after the fallback decision.
    - No caching: every call re-reads project, users and delegation.

Failure modes:
    - ProjectNotFoundError if the project does not exist.
    - Store errors fail closed: empty authority / not assigned.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.domain import authority as rules
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import Authority, UserSnapshot
from approval_kernel.domain.types import AuthoritySource, UserRole
from approval_kernel.exceptions import ProjectNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.project import ProjectModel
from approval_kernel.selectors.delegation_selector import DelegationSelector
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.selectors.user_selector import UserSelector
from approval_kernel.services.base import BaseService

logger = get_logger("services.authority_resolver")


class AuthorityResolver(BaseService[ProjectModel]):
    """Resolves approval authority and project access per user."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        fallback_enabled: bool = True,
    ):
        super().__init__(session, clock)
        self._fallback_enabled = fallback_enabled
        self._projects = ProjectSelector(session)
        self._users = UserSelector(session)
        self._delegations = DelegationSelector(session)

    def authority_for(self, project_id: str) -> Authority:
        """Current authority set for ``project_id``.

        Raises:
            ProjectNotFoundError: project does not exist.
        """
        try:
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)

            candidates = set(project.approver_ids) | set(project.production_head_ids)
            if project.manager_id:
                candidates.add(project.manager_id)
            users = self._users.get_many(candidates)
            approvers, heads = rules.explicit_authority(project, users)

            source = AuthoritySource.EXPLICIT
            if not approvers and not heads and self._fallback_enabled:
                approvers = frozenset(
                    u.uid for u in self._users.by_role(UserRole.APPROVER)
                )
                heads = frozenset(
                    u.uid for u in self._users.by_role(UserRole.PRODUCTION_HEAD)
                )
                source = AuthoritySource.FALLBACK
                logger.warning(
                    "authority_fallback_used",
                    extra={
                        "project_id": project_id,
                        "approver_count": len(approvers),
                        "production_head_count": len(heads),
                    },
                )

            delegation = self._delegations.active_for_project(project_id)
        except SQLAlchemyError:
            logger.error(
                "authority_resolution_failed",
                extra={"project_id": project_id},
                exc_info=True,
            )
            return Authority(
                project_id=project_id,
                approver_ids=frozenset(),
                production_head_ids=frozenset(),
                source=AuthoritySource.EXPLICIT,
            )

        result = rules.merge_delegation(
            project_id, approvers, heads, source, delegation, self._clock.now(),
        )
        if result.is_empty:
            logger.warning("authority_empty", extra={"project_id": project_id})
        logger.debug(
            "authority_resolved",
            extra={
                "project_id": project_id,
                "approver_ids": result.approver_ids,
                "production_head_ids": result.production_head_ids,
                "source": result.source.value,
                "delegated_approver_id": result.delegated_approver_id,
            },
        )
        return result

    def is_user_assigned_to_project(
        self,
        user: UserSnapshot | str,
        project_id: str,
    ) -> bool:
        """Role-dependent access gate.  Evaluated fresh on every call."""
        try:
            snapshot = self._users.get(user) if isinstance(user, str) else user
            project = self._projects.get(project_id)
            if snapshot is None or project is None:
                return False
            delegation = None
            if snapshot.role == UserRole.APPROVER:
                delegation = self._delegations.active_for_project(project_id)
        except SQLAlchemyError:
            logger.error(
                "assignment_check_failed",
                extra={"project_id": project_id},
                exc_info=True,
            )
            return False
        return rules.is_user_assigned_to_project(
            snapshot, project, delegation, self._clock.now(),
        )

    def holds_authority(self, user_id: str, project_id: str) -> bool:
        """True for ADMIN users and for members of the current authority set."""
        user = self._users.get(user_id)
        if user is None:
            return False
        if user.role == UserRole.ADMIN:
            return True
        return user_id in self.authority_for(project_id).all_ids
