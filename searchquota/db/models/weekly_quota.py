from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from searchquota.db.base import Base


class WeeklyJobQuota(Base):
    """
    Weekly job discovery quota, one per account per Monday-start week.
    
    consumed always equals the sum of kept over the week's runs and never
    exceeds limit. Records are never deleted; a new week gets a new record.
    """
    __tablename__ = "weekly_job_quotas"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, nullable=False, index=True)
    tier = Column(String, nullable=False)
    week_start = Column(DateTime(timezone=True), nullable=False)
    week_end = Column(DateTime(timezone=True), nullable=False)
    week_year = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False)
    limit = Column(Integer, nullable=False)  # tier cap snapshotted at creation
    consumed = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    runs = relationship(
        "WeeklySearchRun",
        back_populates="quota",
        order_by="WeeklySearchRun.id",
    )

    __table_args__ = (
        UniqueConstraint('account_id', 'week_start', name='uq_account_week'),
        Index('idx_account_week_number', 'account_id', 'week_year', 'week_number'),
    )


class WeeklySearchRun(Base):
    """
    One admission into a weekly quota.
    
    kept is fixed at creation. Deleting the search only flags the row.
    """
    __tablename__ = "weekly_search_runs"

    id = Column(Integer, primary_key=True, index=True)
    quota_id = Column(Integer, ForeignKey("weekly_job_quotas.id"), nullable=False, index=True)
    run_id = Column(String, nullable=False, index=True)  # AI search id
    run_date = Column(DateTime(timezone=True), nullable=False)
    kept = Column(Integer, nullable=False)
    label = Column(String, nullable=True)  # search name shown on dashboards
    deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    quota = relationship("WeeklyJobQuota", back_populates="runs")
