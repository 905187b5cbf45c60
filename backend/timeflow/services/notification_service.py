"""
Notification/audit sink for workflow events.

Events are published after the transaction that produced them has committed.
Delivery problems are logged and never undo the transition.
"""

import logging
from typing import Iterable

from timeflow.models.project_approval import ApprovalHistory
from timeflow.services.base_service import BaseService

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    """Default sink: writes each approval event to the application log."""

    async def deliver(self, event: ApprovalHistory) -> None:
        logger.info(
            f"Timesheet {event.timesheet_id} {event.action.value}",
            extra={
                "timesheet_id": str(event.timesheet_id),
                "project_id": str(event.project_id) if event.project_id else None,
                "action": event.action.value,
                "approver_id": str(event.approver_id) if event.approver_id else None,
                "approver_role": event.approver_role,
                "status_before": event.status_before.value if event.status_before else None,
                "status_after": event.status_after.value,
            },
        )

    async def publish(self, events: Iterable[ApprovalHistory]) -> int:
        """
        Deliver committed events one by one.

        Returns:
            Number of events delivered
        """
        delivered = 0
        for event in events:
            try:
                await self.deliver(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Failed to deliver notification for timesheet {event.timesheet_id}: {e}",
                    extra={"timesheet_id": str(event.timesheet_id), "action": event.action.value},
                )
        return delivered
