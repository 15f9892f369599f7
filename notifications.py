import asyncio
import logging
import os
import uuid
from datetime import datetime, timezone

from mongo import NOTIFICATIONS

logger = logging.getLogger(__name__)

NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))


class NotificationSink:
    """Fire-and-forget writer for panel notifications.

    Delivery is best effort: a slow or failing store never holds up a booking
    or a scheduler sweep, it is logged and dropped.
    """

    def __init__(self, db, timeout: float = NOTIFICATION_TIMEOUT_SECONDS):
        self.collection = db[NOTIFICATIONS]
        self.timeout = timeout

    async def emit(self, type: str, title: str, message: str, targets: dict = None) -> bool:
        notification = {
            "_id": f"ntf{uuid.uuid4().hex[:12]}",
            "type": type,
            "title": title,
            "message": message,
            "read": False,
            "createdAt": datetime.now(timezone.utc),
            **{k: v for k, v in (targets or {}).items() if v is not None},
        }
        try:
            await asyncio.wait_for(self.collection.insert_one(notification), timeout=self.timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Notification '{type}' timed out after {self.timeout}s, dropped")
        except Exception as e:
            logger.error(f"Error creating notification '{type}': {str(e)}")
        return False
