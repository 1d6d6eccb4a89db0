"""Background worker for queued tasks (emails, ledger maintenance)."""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from growi_api.config import settings
from growi_api.core.database import SessionLocal
from growi_api.models.task import BackgroundTask
from growi_api.services.task_queue import PURGE_EXPIRED_TOKENS, WELCOME_EMAIL, task_queue
from growi_api.services.mail_service import mail_service
from growi_api.services.token_service import token_service

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Session, Dict[str, Any]], None]

# A task left "running" longer than this is assumed orphaned by a dead worker.
STALE_RUNNING_AFTER = timedelta(minutes=10)


class TaskDeliveryError(Exception):
    """Handler could not complete; the task should be retried."""


def _send_welcome_email(db: Session, payload: Dict[str, Any]) -> None:
    if not mail_service.send_welcome_email(payload["email"], payload.get("first_name")):
        raise TaskDeliveryError("welcome email delivery failed")


def _purge_expired_tokens(db: Session, payload: Dict[str, Any]) -> None:
    retention_days = int(payload.get("retention_days", settings.TOKEN_RETENTION_DAYS))
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    token_service.purge_expired(db, cutoff)
    task_queue.purge_finished(db, cutoff)


DEFAULT_HANDLERS: Dict[str, TaskHandler] = {
    WELCOME_EMAIL: _send_welcome_email,
    PURGE_EXPIRED_TOKENS: _purge_expired_tokens,
}


class TaskWorker:
    """DB-backed task queue worker."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        handlers: Optional[Dict[str, TaskHandler]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._handlers = dict(DEFAULT_HANDLERS if handlers is None else handlers)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._processed_count: int = 0
        self._lock = threading.Lock()

    def register(self, task_type: str, handler: TaskHandler) -> None:
        self._handlers[task_type] = handler

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="task-worker", daemon=True)
        self._thread.start()
        logger.info("Task worker started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Task worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "processed_count": self._processed_count,
        }

    def queue_depth(self, db: Session) -> int:
        return task_queue.queue_depth(db)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            processed = 0
            try:
                self.requeue_stale()
                for _ in range(max(1, settings.WORKER_BATCH_SIZE)):
                    if self.process_next_task():
                        processed += 1
                    else:
                        break
            except Exception as exc:
                logger.exception(f"Task worker loop error: {exc}")
            self._heartbeat = time.time()
            if processed == 0:
                self._stop_event.wait(max(0.1, settings.WORKER_POLL_INTERVAL_SECONDS))

    def requeue_stale(self) -> int:
        """
        Put tasks orphaned in 'running' back on the queue (at-least-once delivery).

        A re-queue counts as a retry; a task past WORKER_MAX_RETRIES is marked
        failed instead.

        Returns:
            Number of tasks re-queued
        """
        db = self._session_factory()
        try:
            now = datetime.utcnow()
            stale = (
                BackgroundTask.status == "running",
                BackgroundTask.started_at < now - STALE_RUNNING_AFTER,
            )
            failed = (
                db.query(BackgroundTask)
                .filter(*stale, BackgroundTask.retry_count >= settings.WORKER_MAX_RETRIES)
                .update(
                    {
                        BackgroundTask.status: "failed",
                        BackgroundTask.completed_at: now,
                        BackgroundTask.last_error: "Worker stopped before the task finished",
                    },
                    synchronize_session=False,
                )
            )
            requeued = (
                db.query(BackgroundTask)
                .filter(*stale)
                .update(
                    {
                        BackgroundTask.status: "queued",
                        BackgroundTask.retry_count: BackgroundTask.retry_count + 1,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if requeued:
                logger.warning(f"Re-queued {requeued} stale running task(s)")
            if failed:
                logger.error(f"Marked {failed} stale running task(s) as failed after retries")
            return requeued
        finally:
            db.close()

    def process_next_task(self) -> bool:
        db = self._session_factory()
        try:
            base_query = (
                db.query(BackgroundTask)
                .filter(
                    BackgroundTask.status == "queued",
                    BackgroundTask.execute_at <= datetime.utcnow(),
                )
                .order_by(BackgroundTask.execute_at.asc(), BackgroundTask.id.asc())
            )
            if db.bind is not None and db.bind.dialect.name == "postgresql":
                task = base_query.with_for_update(skip_locked=True).first()
            else:
                task = base_query.first()
            if not task:
                return False

            task.status = "running"
            task.started_at = datetime.utcnow()
            db.commit()
            db.refresh(task)

            try:
                handler = self._handlers.get(task.task_type)
                if handler is None:
                    raise TaskDeliveryError(f"No handler registered for task type {task.task_type!r}")
                handler(db, json.loads(task.payload_json or "{}"))
            except Exception as exc:
                logger.exception(f"Task {task.id} ({task.task_type}) failed: {exc}")
                db.rollback()
                db.refresh(task)
                task.last_error = str(exc)
                if task.retry_count < settings.WORKER_MAX_RETRIES:
                    task.retry_count += 1
                    task.status = "queued"
                    # Linear backoff between attempts
                    task.execute_at = datetime.utcnow() + timedelta(seconds=30 * task.retry_count)
                else:
                    task.status = "failed"
                    task.completed_at = datetime.utcnow()
                db.commit()
            else:
                task.status = "done"
                task.completed_at = datetime.utcnow()
                db.commit()
            finally:
                with self._lock:
                    self._processed_count += 1

            return True
        finally:
            db.close()


task_worker = TaskWorker()
