"""
Module: approval_kernel.models.delegation_audit
Responsibility: Append-only history of delegation transitions (created,
    updated, expired, removed) with actor and before/after snapshots.

Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class DelegationAuditEventModel(Base):
    __tablename__ = "delegation_audit_events"

    __table_args__ = (
        Index("ix_delegation_audit_delegation", "delegation_id", "occurred_at"),
    )

    delegation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    before_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<DelegationAudit {self.delegation_id} {self.action} by {self.actor}>"
