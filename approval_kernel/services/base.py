"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract.  Services receive a caller-owned
    SQLAlchemy ``Session`` and use ``session.flush()``, never
    ``session.commit()``; the caller (workflow facade, sweep job or test
    harness) owns commit/rollback.

Architecture position:
    Kernel > Services -- imperative shell around the pure domain layer.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base
from approval_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        The service never calls ``session.commit()`` or ``session.rollback()``
        on the outer transaction.  Internal SAVEPOINTs (``begin_nested``) are
        used where a step must be undone without aborting the caller.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
