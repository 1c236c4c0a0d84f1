"""
AI job search model: a long-running background discovery task.
"""
import enum

from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, JSON, Text, Index
from sqlalchemy.orm import relationship
from searchquota.db.base import Base


class SearchStatus(str, enum.Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AiJobSearch(Base):
    __tablename__ = "ai_job_searches"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, nullable=False, index=True)
    tier = Column(String, nullable=False)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SearchStatus.RUNNING.value)
    daily_limit = Column(Integer, nullable=False)
    jobs_found_today = Column(Integer, default=0, nullable=False)
    total_jobs_found = Column(Integer, default=0, nullable=False)
    week_ref = Column(DateTime(timezone=True), nullable=True)  # week_start of the quota record last contributed to
    status_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)
    last_progress_at = Column(DateTime(timezone=True), nullable=False)  # only progress reports move this; drives the daily reset

    reasoning_logs = relationship(
        "AiSearchReasoningLog",
        back_populates="search",
        order_by="AiSearchReasoningLog.id",
    )

    __table_args__ = (
        Index('idx_search_account_status', 'account_id', 'status'),
    )


class AiSearchReasoningLog(Base):
    """Append-only audit entry for a search phase."""
    __tablename__ = "ai_search_reasoning_logs"

    id = Column(Integer, primary_key=True, index=True)
    search_id = Column(Integer, ForeignKey("ai_job_searches.id"), nullable=False, index=True)
    phase = Column(String, nullable=False)  # initialization | job_saving | completion | error | ...
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    success = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    search = relationship("AiJobSearch", back_populates="reasoning_logs")
