"""Enqueue deferred side effects as database rows."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy.orm import Session

from growi_api.models.task import BackgroundTask

logger = logging.getLogger(__name__)

WELCOME_EMAIL = "send_welcome_email"
PURGE_EXPIRED_TOKENS = "purge_expired_tokens"


class TaskQueue:
    """
    Producer side of the task queue.

    Rows are written in the caller's transaction, so a task exists if and
    only if the work that triggered it was committed. The idempotency key
    makes enqueueing the same logical task twice a no-op.
    """

    @staticmethod
    def enqueue(
        db: Session,
        task_type: str,
        payload: Dict[str, Any],
        *,
        idempotency_key: str,
        delay_seconds: int = 0,
        commit: bool = True,
    ) -> BackgroundTask:
        existing = (
            db.query(BackgroundTask)
            .filter(BackgroundTask.idempotency_key == idempotency_key)
            .first()
        )
        if existing:
            logger.debug(f"Task {idempotency_key} already enqueued (status={existing.status})")
            return existing

        task = BackgroundTask(
            task_type=task_type,
            payload_json=json.dumps(payload, ensure_ascii=False),
            idempotency_key=idempotency_key,
            status="queued",
            retry_count=0,
            execute_at=datetime.utcnow() + timedelta(seconds=max(0, delay_seconds)),
        )
        db.add(task)
        if commit:
            db.commit()
            db.refresh(task)
        else:
            db.flush()
        logger.info(f"Enqueued task {task_type} ({idempotency_key})")
        return task

    @staticmethod
    def queue_depth(db: Session) -> int:
        return db.query(BackgroundTask).filter(BackgroundTask.status == "queued").count()

    @staticmethod
    def purge_finished(db: Session, older_than: datetime) -> int:
        """Delete done/failed tasks that completed before the cutoff"""
        deleted = (
            db.query(BackgroundTask)
            .filter(
                BackgroundTask.status.in_(("done", "failed")),
                BackgroundTask.completed_at < older_than,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        if deleted:
            logger.info(f"Purged {deleted} finished background task(s)")
        return deleted


task_queue = TaskQueue()
