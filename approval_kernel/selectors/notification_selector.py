"""Notification reads (recipient inbox and per-event lookups)."""

from sqlalchemy import select

from approval_kernel.domain.dtos import NotificationRecord
from approval_kernel.domain.types import NotificationType
from approval_kernel.models.notification import NotificationModel
from approval_kernel.selectors.base import BaseSelector


class NotificationSelector(BaseSelector[NotificationModel]):

    def for_recipient(self, recipient_id: str) -> list[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.recipient_id == recipient_id)
            .order_by(NotificationModel.created_at, NotificationModel.id)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def for_related(
        self,
        related_id: str,
        notification_type: NotificationType | None = None,
    ) -> list[NotificationRecord]:
        stmt = select(NotificationModel).where(NotificationModel.related_id == related_id)
        if notification_type is not None:
            stmt = stmt.where(NotificationModel.type == notification_type.value)
        stmt = stmt.order_by(NotificationModel.created_at, NotificationModel.id)
        return [m.to_dto() for m in self.session.scalars(stmt)]
