"""
Module: approval_kernel.models.notification
Responsibility: Append-only persistence of routed notifications.  One row
    per recipient per event.  Read/unread state is tracked elsewhere.

Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base

if TYPE_CHECKING:
    from approval_kernel.domain.dtos import NotificationRecord


class NotificationModel(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_recipient", "recipient_id", "created_at"),
        Index("ix_notifications_related", "related_id", "type"),
    )

    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_role: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(4000), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    project_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    related_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    action_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    navigation_target: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    @classmethod
    def from_dto(cls, dto: NotificationRecord, created_at: datetime) -> NotificationModel:
        return cls(
            recipient_id=dto.recipient_id,
            recipient_role=dto.recipient_role,
            title=dto.title,
            message=dto.message,
            type=dto.type.value,
            project_id=dto.project_id,
            project_name=dto.project_name,
            related_id=dto.related_id,
            action_required=dto.action_required,
            navigation_target=dto.navigation_target,
            created_at=created_at,
        )

    def to_dto(self) -> NotificationRecord:
        from approval_kernel.domain.dtos import NotificationRecord
        from approval_kernel.domain.types import NotificationType

        return NotificationRecord(
            id=self.id,
            recipient_id=self.recipient_id,
            recipient_role=self.recipient_role,
            title=self.title,
            message=self.message,
            type=NotificationType(self.type),
            project_id=self.project_id,
            project_name=self.project_name,
            related_id=self.related_id,
            action_required=self.action_required,
            navigation_target=self.navigation_target,
            created_at=self.created_at,
        )
