"""Deferred task queue model"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Index, CheckConstraint
from sqlalchemy.sql import func
from growi_api.core.database import Base


class BackgroundTask(Base):
    """Queued side effect (e.g. an email) processed by the task worker"""

    __tablename__ = "background_tasks"

    id = Column(Integer, primary_key=True, index=True)
    task_type = Column(String(64), nullable=False)
    payload_json = Column(Text, nullable=False, default="{}")
    idempotency_key = Column(String(128), unique=True, nullable=False)
    status = Column(String(20), default="queued", nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)
    execute_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_background_tasks_status_execute_at', 'status', 'execute_at'),
        CheckConstraint(
            "status IN ('queued', 'running', 'done', 'failed')",
            name='chk_task_status'
        ),
    )

    def __repr__(self):
        return f"<BackgroundTask(id={self.id}, type='{self.task_type}', status='{self.status}')>"
