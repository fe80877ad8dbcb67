"""Periodic background tasks.

Each function is a no-arg async coroutine registered with the
PeriodicScheduler in ``marketplace.main``.
"""

from __future__ import annotations

from marketplace.infrastructure.database.session import get_db_session
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Auto-approve sweep (every TASK_AUTO_APPROVE_POLL_SECONDS)
# ---------------------------------------------------------------------------

async def auto_approve_overdue_tasks() -> list:
    """Release escrow for completed tasks the buyer left unreviewed."""
    from marketplace.tasks.service import TaskService

    try:
        async with get_db_session() as session:
            approved = await TaskService(session).auto_approve_due()
            await session.commit()
            if approved:
                logger.info("auto_approve_committed", count=len(approved))
            return approved
    except Exception as e:
        logger.error("auto_approve_overdue_tasks_failed", error=str(e))
        return []
