"""
ExpirySweeper -- periodic, idempotent delegation expiry.

Responsibility:
    Scans every project's active delegations, picks those past their
    expiring date, and drives each through DelegationLifecycle.expire.

Architecture position:
    Kernel > Services.  Invoked by the batch scheduler job, by the
    "run now" trigger, and per-project before authority is evaluated.

Invariants enforced:
    - Open-ended delegations (no expiring date) are never due.
    - Safe under overlap: a concurrent or repeated run that loses the
      compare-and-set inside ``expire`` counts nothing and fires nothing.
    - Per-project isolation: each project runs in its own SAVEPOINT; a
      failure is recorded and the sweep moves on.
    - Only failure to enumerate projects is fatal (zero progress, logged,
      retried by the next scheduled run).
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.db.base import new_id
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import SweepFailure, SweepResult
from approval_kernel.domain.types import OperationStatus
from approval_kernel.exceptions import ApprovalKernelError, StoreUnavailableError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.temporary_approver import TemporaryApproverModel
from approval_kernel.selectors.delegation_selector import DelegationSelector
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.services.base import BaseService
from approval_kernel.services.delegation_lifecycle import DelegationLifecycle

logger = get_logger("services.expiry_sweeper")


class ExpirySweeper(BaseService[TemporaryApproverModel]):
    """Finds due delegations and expires them."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lifecycle: DelegationLifecycle | None = None,
    ):
        super().__init__(session, clock)
        self._lifecycle = lifecycle or DelegationLifecycle(session, self._clock)
        self._projects = ProjectSelector(session)
        self._delegations = DelegationSelector(session)

    def sweep(self) -> SweepResult:
        """Sweep all projects.  Never raises."""
        sweep_id = new_id()
        with LogContext.bind(sweep_id=sweep_id):
            logger.info("sweep_started")
            try:
                project_ids = self._projects.list_ids()
            except SQLAlchemyError as exc:
                logger.error("sweep_enumeration_failed", exc_info=True)
                return SweepResult(
                    sweep_id=sweep_id,
                    projects_checked=0,
                    total_deactivated=0,
                    fatal=True,
                    error=str(exc),
                )

            deactivated = 0
            failures: list[SweepFailure] = []
            for project_id in project_ids:
                savepoint = self.session.begin_nested()
                try:
                    count, project_failures = self._sweep_one(project_id)
                    savepoint.commit()
                except Exception as exc:
                    savepoint.rollback()
                    logger.error(
                        "sweep_project_failed",
                        extra={"project_id": project_id},
                        exc_info=True,
                    )
                    failures.append(SweepFailure(
                        project_id=project_id,
                        delegation_id=None,
                        error_code=(
                            exc.code if isinstance(exc, ApprovalKernelError)
                            else type(exc).__name__
                        ),
                        message=str(exc),
                    ))
                    continue
                deactivated += count
                failures.extend(project_failures)

            result = SweepResult(
                sweep_id=sweep_id,
                projects_checked=len(project_ids),
                total_deactivated=deactivated,
                failures=tuple(failures),
            )
            logger.info(
                "sweep_completed",
                extra={
                    "projects_checked": result.projects_checked,
                    "total_deactivated": result.total_deactivated,
                    "failure_count": len(result.failures),
                },
            )
            return result

    def sweep_project(self, project_id: str) -> int:
        """Expire due delegations of one project.  Returns how many this call expired.

        Raises:
            StoreUnavailableError: the due query failed.
        """
        savepoint = self.session.begin_nested()
        try:
            count, failures = self._sweep_one(project_id)
            savepoint.commit()
        except SQLAlchemyError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("sweep_project", str(exc)) from exc
        for failure in failures:
            logger.warning(
                "project_sweep_delegation_failed",
                extra={
                    "project_id": failure.project_id,
                    "delegation_id": failure.delegation_id,
                    "error_code": failure.error_code,
                },
            )
        return count

    def _sweep_one(self, project_id: str) -> tuple[int, list[SweepFailure]]:
        now = self._clock.now()
        due = self._delegations.list_due(project_id, now)
        count = 0
        failures: list[SweepFailure] = []
        for record in due:
            outcome = self._lifecycle.expire(project_id, record)
            if outcome.status == OperationStatus.SUCCESS:
                count += 1
            elif outcome.status == OperationStatus.FAILED:
                failures.append(SweepFailure(
                    project_id=project_id,
                    delegation_id=record.id,
                    error_code=outcome.error_code or ApprovalKernelError.code,
                    message=outcome.message,
                ))
        return count, failures
