import json
from datetime import datetime, timedelta

from growi_api.config import settings
from growi_api.models.security import RefreshToken
from growi_api.models.task import BackgroundTask
from growi_api.models.user import User
from growi_api.services import task_worker as worker_module
from growi_api.services.mail_service import mail_service
from growi_api.services.task_queue import PURGE_EXPIRED_TOKENS, WELCOME_EMAIL, task_queue
from growi_api.services.task_worker import TaskDeliveryError, TaskWorker


def _task(db, key):
    db.expire_all()
    return db.query(BackgroundTask).filter(BackgroundTask.idempotency_key == key).one()


def _make_due(db, key):
    task = _task(db, key)
    task.execute_at = datetime.utcnow() - timedelta(seconds=1)
    db.commit()


def _mark_running(db, key, started_ago, retry_count=0):
    task = _task(db, key)
    task.status = "running"
    task.started_at = datetime.utcnow() - started_ago
    task.retry_count = retry_count
    db.commit()


def test_enqueue_is_idempotent(db):
    first = task_queue.enqueue(db, WELCOME_EMAIL, {"email": "a@example.com"}, idempotency_key="welcome:1")
    second = task_queue.enqueue(db, WELCOME_EMAIL, {"email": "b@example.com"}, idempotency_key="welcome:1")

    assert first.id == second.id
    assert db.query(BackgroundTask).count() == 1
    assert json.loads(second.payload_json) == {"email": "a@example.com"}
    assert task_queue.queue_depth(db) == 1


def test_successful_task_is_marked_done(db, session_factory):
    calls = []
    worker = TaskWorker(session_factory, handlers={"noop": lambda session, payload: calls.append(payload)})
    task_queue.enqueue(db, "noop", {"n": 1}, idempotency_key="noop:1")

    assert worker.process_next_task() is True
    assert worker.process_next_task() is False

    task = _task(db, "noop:1")
    assert calls == [{"n": 1}]
    assert task.status == "done"
    assert task.completed_at is not None
    assert worker.status()["processed_count"] == 1


def test_delayed_task_waits_until_due(db, session_factory):
    worker = TaskWorker(session_factory, handlers={"noop": lambda session, payload: None})
    task_queue.enqueue(db, "noop", {}, idempotency_key="later", delay_seconds=60)

    assert worker.process_next_task() is False
    _make_due(db, "later")
    assert worker.process_next_task() is True


def test_failing_task_is_retried_then_marked_failed(db, session_factory):
    def explode(session, payload):
        raise TaskDeliveryError("smtp down")

    worker = TaskWorker(session_factory, handlers={"flaky": explode})
    task_queue.enqueue(db, "flaky", {}, idempotency_key="flaky:1")

    for attempt in range(1, settings.WORKER_MAX_RETRIES + 1):
        assert worker.process_next_task() is True
        task = _task(db, "flaky:1")
        assert task.status == "queued"
        assert task.retry_count == attempt
        assert task.last_error == "smtp down"
        assert task.execute_at > datetime.utcnow()
        _make_due(db, "flaky:1")

    assert worker.process_next_task() is True
    task = _task(db, "flaky:1")
    assert task.status == "failed"
    assert task.retry_count == settings.WORKER_MAX_RETRIES


def test_unknown_task_type_is_treated_as_failure(db, session_factory):
    worker = TaskWorker(session_factory, handlers={})
    task_queue.enqueue(db, "mystery", {}, idempotency_key="mystery:1")

    worker.process_next_task()

    task = _task(db, "mystery:1")
    assert task.retry_count == 1
    assert "mystery" in task.last_error


def test_stale_running_tasks_are_requeued(db, session_factory):
    worker = TaskWorker(session_factory, handlers={})
    task_queue.enqueue(db, "noop", {}, idempotency_key="stale")
    task_queue.enqueue(db, "noop", {}, idempotency_key="fresh")
    _mark_running(db, "stale", timedelta(minutes=11))
    _mark_running(db, "fresh", timedelta(minutes=1))

    assert worker.requeue_stale() == 1
    stale = _task(db, "stale")
    assert stale.status == "queued"
    assert stale.retry_count == 1
    assert _task(db, "fresh").status == "running"


def test_stale_task_out_of_retries_is_failed(db, session_factory):
    worker = TaskWorker(session_factory, handlers={})
    task_queue.enqueue(db, "noop", {}, idempotency_key="worn")
    _mark_running(db, "worn", timedelta(minutes=30), retry_count=settings.WORKER_MAX_RETRIES)

    assert worker.requeue_stale() == 0
    task = _task(db, "worn")
    assert task.status == "failed"
    assert task.completed_at is not None
    assert task.retry_count == settings.WORKER_MAX_RETRIES


def test_welcome_email_handler(db, session_factory, monkeypatch):
    sent = []
    monkeypatch.setattr(
        mail_service, "send_welcome_email", lambda email, first_name: sent.append(email) or True
    )
    worker = TaskWorker(session_factory)
    task_queue.enqueue(
        db, WELCOME_EMAIL, {"email": "a@example.com", "first_name": "A"}, idempotency_key="welcome:7"
    )

    worker.process_next_task()

    assert sent == ["a@example.com"]
    assert _task(db, "welcome:7").status == "done"


def test_welcome_email_delivery_failure_is_retried(db, session_factory, monkeypatch):
    monkeypatch.setattr(mail_service, "send_welcome_email", lambda email, first_name: False)
    worker = TaskWorker(session_factory)
    task_queue.enqueue(db, WELCOME_EMAIL, {"email": "a@example.com"}, idempotency_key="welcome:8")

    worker.process_next_task()

    task = _task(db, "welcome:8")
    assert task.status == "queued"
    assert task.retry_count == 1


def test_purge_handler_uses_retention_from_payload(db, session_factory):
    user = User(email="a@example.com", password_hash="hash")
    db.add(user)
    db.commit()
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash="a" * 64,
            expires_at=datetime.utcnow() - timedelta(days=3),
        )
    )
    db.commit()
    worker = TaskWorker(session_factory)

    task_queue.enqueue(db, PURGE_EXPIRED_TOKENS, {"retention_days": 5}, idempotency_key="purge:a")
    worker.process_next_task()
    db.expire_all()
    assert db.query(RefreshToken).count() == 1

    task_queue.enqueue(db, PURGE_EXPIRED_TOKENS, {"retention_days": 1}, idempotency_key="purge:b")
    worker.process_next_task()
    db.expire_all()
    assert db.query(RefreshToken).count() == 0


def test_registered_handlers_cover_queued_task_types():
    assert set(worker_module.DEFAULT_HANDLERS) == {WELCOME_EMAIL, PURGE_EXPIRED_TOKENS}


def test_worker_is_not_running_until_started(session_factory):
    worker = TaskWorker(session_factory)
    assert worker.is_running() is False
    assert worker.status()["running"] is False


def test_purge_removes_old_finished_tasks(db, session_factory):
    now = datetime.utcnow()
    for key, status, completed in (
        ("old-done", "done", now - timedelta(days=30)),
        ("old-failed", "failed", now - timedelta(days=30)),
        ("recent-done", "done", now - timedelta(hours=1)),
        ("in-flight", "running", None),
    ):
        task_queue.enqueue(db, "noop", {}, idempotency_key=key)
        task = _task(db, key)
        task.status = status
        task.completed_at = completed
        db.commit()
    worker = TaskWorker(session_factory)

    task_queue.enqueue(db, PURGE_EXPIRED_TOKENS, {"retention_days": 7}, idempotency_key="purge:c")
    worker.process_next_task()

    db.expire_all()
    remaining = {task.idempotency_key for task in db.query(BackgroundTask).all()}
    assert remaining == {"recent-done", "in-flight", "purge:c"}
