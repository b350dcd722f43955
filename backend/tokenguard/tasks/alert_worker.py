"""Background worker for usage alert tasks from the Redis queue

Each dequeued alert is processed in its own asyncio task with its own DB
session, so a slow email never holds up the polling loop.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from tokenguard.core.errors import NotFoundError
from tokenguard.db.session import SessionLocal
from tokenguard.db.task_queue import (
    USAGE_ALERT_TASK, dequeue_task, get_task_status, mark_task_processing,
    mark_task_completed, mark_task_failed, cleanup_stale_tasks
)
from tokenguard.services.notification_service import UsageAlertNotifier

logger = logging.getLogger(__name__)
alerts_logger = logging.getLogger("alerts")

REQUIRED_FIELDS = ("user_id", "current_tokens", "max_tokens", "threshold")
CLEANUP_INTERVAL_SECONDS = 600


def process_alert_task(task_data: Dict[str, Any], session_factory=SessionLocal) -> Optional[bool]:
    """Run the notifier for one queued alert

    Returns:
        True if delivered, False if it was already sent, None if the task failed
    """
    task_id = task_data.get("task_id")
    payload = task_data.get("payload", {})

    missing = [field for field in REQUIRED_FIELDS if payload.get(field) is None]
    if missing:
        logger.error(f"Task {task_id} missing {', '.join(missing)} in payload")
        mark_task_failed(task_id, f"Missing {', '.join(missing)} in task payload", retry=False)
        return None

    mark_task_processing(task_id)

    db = session_factory()
    try:
        sent = UsageAlertNotifier(db).notify(
            int(payload["user_id"]),
            int(payload["current_tokens"]),
            int(payload["max_tokens"]),
            int(payload["threshold"]),
        )
        mark_task_completed(task_id, {"sent": sent})
        return sent

    except (NotFoundError, ValueError) as e:
        # Unknown user or threshold - retrying cannot help
        logger.warning(f"Task {task_id} rejected: {e}")
        mark_task_failed(task_id, str(e), retry=False)
        return None

    except Exception as e:
        logger.error(f"Task {task_id} failed: {e}", exc_info=True)
        mark_task_failed(task_id, str(e), retry=True)
        return None

    finally:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"Error closing DB session for task {task_id}: {e}")


def _retry_delay(task_id: str) -> float:
    """Seconds until a retried task may run (0 when due)"""
    task_meta = get_task_status(task_id)
    retry_after_str = task_meta.get("retry_after") if task_meta else None
    if not retry_after_str:
        return 0.0
    try:
        retry_after = datetime.fromisoformat(retry_after_str.replace('Z', '+00:00'))
    except (ValueError, TypeError) as e:
        logger.warning(f"Error parsing retry_after for task {task_id}: {e}")
        return 0.0
    return max(0.0, (retry_after - datetime.now(timezone.utc)).total_seconds())


async def _process_when_due(task_data: Dict[str, Any]) -> None:
    delay = _retry_delay(task_data.get("task_id"))
    if delay:
        alerts_logger.info(
            f"Task {task_data.get('task_id')} is retry attempt {task_data.get('retry_count', 0)}, "
            f"waiting {delay:.0f}s before processing"
        )
        await asyncio.sleep(delay)
    # Notifier does blocking DB and HTTP I/O
    await asyncio.to_thread(process_alert_task, task_data)


async def alert_worker_task() -> None:
    """Main worker loop: poll the alert queue and spawn a task per alert"""
    logger.info("Starting alert worker task")
    last_cleanup = 0.0
    loop = asyncio.get_running_loop()

    while True:
        try:
            if loop.time() - last_cleanup > CLEANUP_INTERVAL_SECONDS:
                cleaned = cleanup_stale_tasks(timeout_seconds=3600)
                if cleaned:
                    logger.warning(f"Cleaned up {cleaned} stale alert task(s)")
                last_cleanup = loop.time()

            task_data = await dequeue_task(USAGE_ALERT_TASK, timeout=5)
            if task_data is None:
                continue

            asyncio.create_task(_process_when_due(task_data))

        except asyncio.CancelledError:
            logger.info("Alert worker stopped")
            raise
        except Exception as e:
            logger.error(f"Error in alert worker loop: {e}", exc_info=True)
            await asyncio.sleep(5)
