"""Redis-based task queue for fire-and-forget side effects

Tasks are JSON blobs pushed on a Redis list per task type, with a metadata hash
per task for status, retries and errors. Producers never wait on consumers: the
request path only pays for one LPUSH.
"""
import json
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional

from tokenguard.db.redis import get_redis_client, get_async_redis_client

logger = logging.getLogger(__name__)

# Redis key prefixes
QUEUE_KEY_PREFIX = "task:queue:"
META_KEY_PREFIX = "task:meta:"
PROCESSING_SET_KEY = "task:processing"

# Task TTL (24 hours for completed/failed tasks metadata)
TASK_META_TTL = 24 * 60 * 60

# Task types
USAGE_ALERT_TASK = "usage_alert"


def enqueue_task(
    task_type: str,
    payload: Dict[str, Any],
    retry_count: int = 0,
    max_retries: int = 3,
    retry_after: Optional[datetime] = None
) -> str:
    """Enqueue a task to the Redis queue

    Args:
        task_type: Type of task (e.g., 'usage_alert')
        payload: JSON-serializable task payload
        retry_count: Current retry attempt (0 for new tasks)
        max_retries: Maximum number of automatic retries
        retry_after: Earliest time the worker may process the task

    Returns:
        task_id: Unique task identifier
    """
    task_id = str(uuid.uuid4())
    created_at = datetime.now(timezone.utc).isoformat()

    meta = {
        "task_id": task_id,
        "task_type": task_type,
        "payload": json.dumps(payload),
        "retry_count": str(retry_count),
        "max_retries": str(max_retries),
        "created_at": created_at,
        "status": "pending"
    }
    if retry_after:
        meta["retry_after"] = retry_after.isoformat()

    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client.hset(meta_key, mapping=meta)
    client.expire(meta_key, TASK_META_TTL)

    client.lpush(f"{QUEUE_KEY_PREFIX}{task_type}", json.dumps({
        "task_id": task_id,
        "task_type": task_type,
        "payload": payload,
        "retry_count": retry_count,
        "max_retries": max_retries,
        "created_at": created_at
    }))

    logger.info(f"Enqueued task {task_id} of type {task_type} (retry_count={retry_count})")
    return task_id


async def dequeue_task(task_type: str, timeout: int = 5) -> Optional[Dict[str, Any]]:
    """Dequeue a task from the Redis queue (blocking)

    Returns:
        Task dict if task available, None on timeout or Redis failure
    """
    client = get_async_redis_client()
    if client is None:
        logger.error("Async Redis client not available")
        return None

    try:
        # BRPOP returns [queue_name, task_json] or None
        result = await client.brpop(f"{QUEUE_KEY_PREFIX}{task_type}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return json.loads(task_json)
    except Exception as e:
        logger.error(f"Error dequeuing task: {e}", exc_info=True)
        return None


def get_task_status(task_id: str) -> Optional[Dict[str, Any]]:
    """Get task status and metadata"""
    meta = get_redis_client().hgetall(f"{META_KEY_PREFIX}{task_id}")
    if not meta:
        return None

    if "payload" in meta:
        meta["payload"] = json.loads(meta["payload"])
    for field in ("retry_count", "max_retries"):
        if field in meta:
            meta[field] = int(meta[field])

    return meta


def mark_task_processing(task_id: str) -> None:
    """Mark task as processing"""
    client = get_redis_client()
    client.hset(f"{META_KEY_PREFIX}{task_id}", mapping={
        "status": "processing",
        "started_at": datetime.now(timezone.utc).isoformat()
    })
    client.sadd(PROCESSING_SET_KEY, task_id)


def mark_task_completed(task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
    """Mark task as completed, storing an optional result"""
    client = get_redis_client()
    mapping = {
        "status": "completed",
        "completed_at": datetime.now(timezone.utc).isoformat()
    }
    if result:
        mapping["result"] = json.dumps(result)
    client.hset(f"{META_KEY_PREFIX}{task_id}", mapping=mapping)
    client.srem(PROCESSING_SET_KEY, task_id)

    logger.info(f"Marked task {task_id} as completed")


def mark_task_failed(task_id: str, error: str, retry: bool = True) -> Optional[str]:
    """Mark task as failed and optionally schedule a retry with exponential backoff

    Returns:
        New task_id if retry scheduled, None otherwise
    """
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    meta = client.hgetall(meta_key)
    if not meta:
        logger.warning(f"Task {task_id} metadata not found")
        return None

    retry_count = int(meta.get("retry_count", "0"))
    max_retries = int(meta.get("max_retries", "3"))
    client.srem(PROCESSING_SET_KEY, task_id)

    if retry and retry_count < max_retries:
        new_retry_count = retry_count + 1
        delay_seconds = min(300, 2 ** new_retry_count)  # Max 5 minutes

        client.hset(meta_key, mapping={
            "status": "retrying",
            "error": error,
            "retry_scheduled_at": datetime.now(timezone.utc).isoformat()
        })
        logger.info(
            f"Task {task_id} failed (attempt {retry_count + 1}/{max_retries + 1}), "
            f"scheduling retry in {delay_seconds}s: {error}"
        )

        return enqueue_task(
            task_type=meta.get("task_type"),
            payload=json.loads(meta.get("payload", "{}")),
            retry_count=new_retry_count,
            max_retries=max_retries,
            retry_after=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        )

    client.hset(meta_key, mapping={
        "status": "failed",
        "error": error,
        "failed_at": datetime.now(timezone.utc).isoformat()
    })
    logger.warning(f"Task {task_id} failed permanently after {retry_count + 1} attempts: {error}")
    return None


def cleanup_stale_tasks(timeout_seconds: int = 3600) -> int:
    """Fail tasks that have been processing too long (crashed worker)

    Returns:
        Number of tasks cleaned up
    """
    client = get_redis_client()
    cleaned = 0

    for task_id in list(client.smembers(PROCESSING_SET_KEY)):
        meta_key = f"{META_KEY_PREFIX}{task_id}"
        started_at_str = client.hget(meta_key, "started_at")
        if not started_at_str:
            continue

        try:
            started_at = datetime.fromisoformat(started_at_str.replace('Z', '+00:00'))
        except ValueError as e:
            logger.warning(f"Error parsing started_at for task {task_id}: {e}")
            client.srem(PROCESSING_SET_KEY, task_id)
            cleaned += 1
            continue

        elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
        if elapsed > timeout_seconds:
            logger.warning(f"Cleaning up stale task {task_id} (processing for {elapsed:.0f}s)")
            client.srem(PROCESSING_SET_KEY, task_id)
            client.hset(meta_key, mapping={"status": "failed", "error": f"Task timeout after {elapsed:.0f} seconds"})
            cleaned += 1

    return cleaned
