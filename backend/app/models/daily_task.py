"""
DailySystemTask: completion marker for once-a-day jobs.

A completed row for ("Daily Medication Workflow Generation", date) means the
occurrences for that date were fully materialised. A pending row means a run
started but hit errors, so the next run must retry.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from app.db.base import Base


class DailySystemTask(Base):
    __tablename__ = "daily_system_tasks"
    __table_args__ = (UniqueConstraint("task_name", "task_date", name="uq_daily_task"),)

    id = Column(Integer, primary_key=True, index=True)
    task_name = Column(String(128), nullable=False)
    task_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="pending")  # pending | completed
    completed_at = Column(DateTime(timezone=True), nullable=True)
    details = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DailySystemTask {self.task_name} {self.task_date} {self.status}>"
