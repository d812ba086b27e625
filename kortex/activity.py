"""Best-effort activity log.

Entries are written in the background. A failing write is logged for
operators and otherwise ignored, so it can never fail the request that
produced it.
"""
import asyncio
from typing import Any, Dict, Optional, Set

import structlog

from kortex import db

logger = structlog.get_logger()

ACTION_UPLOAD_DOCUMENT = "upload_document"
ACTION_DELETE_DOCUMENT = "delete_document"
ACTION_CREATE_SUBJECT = "create_subject"
ACTION_UPDATE_SUBJECT = "update_subject"
ACTION_DELETE_SUBJECT = "delete_subject"
ACTION_CHAT_QUERY = "chat_query"


class ActivityLogger:
    """Fire-and-forget writer for the activity_logs table."""

    def __init__(self, writer=None):
        """Initialize the activity logger.

        Args:
            writer: Callable(user_id, action_type, entity_id, metadata) doing
                the actual write (defaults to db.insert_activity_log)
        """
        self._writer = writer or db.insert_activity_log
        self._pending: Set[asyncio.Task] = set()

    def log(
        self,
        user_id: str,
        action_type: str,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Schedule an activity entry; returns immediately."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (CLI code paths): write inline, still best-effort
            self._write(user_id, action_type, entity_id, metadata)
            return

        task = loop.create_task(
            asyncio.to_thread(self._write, user_id, action_type, entity_id, metadata)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _write(
        self,
        user_id: str,
        action_type: str,
        entity_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        try:
            self._writer(user_id, action_type, entity_id, metadata)
        except Exception as e:
            logger.warning(
                "activity_log_failed",
                action_type=action_type,
                entity_id=entity_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled entries to finish (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
