"""Job runs model for governor batch execution history."""
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, Index
from wa_governor.db.base import Base


class JobStatus(str, PyEnum):
    """Job run status."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRun(Base):
    """Job runs model - governor batch execution history."""

    __tablename__ = "job_runs"

    run_id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(100), nullable=False)  # health_recalculation, warmup_state_check, daily_counter_reset
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(Enum(JobStatus), default=JobStatus.RUNNING, nullable=False)
    counters_json = Column(Text, nullable=True)  # JSON with succeeded/failed/error-kind counts
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(100), nullable=True)  # actor id or "scheduler"

    __table_args__ = (
        Index('idx_job_name', 'job_name'),
        Index('idx_job_started_at', 'started_at'),
    )

    def __repr__(self) -> str:
        return f"<JobRun(run_id={self.run_id}, job='{self.job_name}', status='{self.status}')>"
