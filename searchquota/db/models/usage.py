from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from searchquota.db.base import Base


class UsageLedger(Base):
    """
    Monthly usage ledger, one per account.
    
    Counters for the current period live in usage_counters; past periods are
    archived to usage_snapshots on rollover.
    """
    __tablename__ = "usage_ledgers"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, unique=True, nullable=False, index=True)
    period_start = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    counters = relationship("UsageCounter", back_populates="ledger", cascade="all, delete-orphan")
    snapshots = relationship(
        "UsageSnapshot",
        back_populates="ledger",
        order_by="UsageSnapshot.period_start",
    )


class UsageCounter(Base):
    """Current-period count for one action kind."""
    __tablename__ = "usage_counters"

    id = Column(Integer, primary_key=True, index=True)
    ledger_id = Column(Integer, ForeignKey("usage_ledgers.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # "resume_uploads", "job_imports", ...
    count = Column(Integer, default=0, nullable=False)

    ledger = relationship("UsageLedger", back_populates="counters")

    # One counter per kind per ledger
    __table_args__ = (
        UniqueConstraint('ledger_id', 'kind', name='uq_ledger_kind'),
    )


class UsageSnapshot(Base):
    """Archived period of a ledger. Rows are only ever inserted."""
    __tablename__ = "usage_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    ledger_id = Column(Integer, ForeignKey("usage_ledgers.id"), nullable=False, index=True)
    account_id = Column(String, nullable=False, index=True)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    month_key = Column(String(7), nullable=False)  # "YYYY-MM" of period_start
    counts = Column(JSON, nullable=False, default=dict)
    archived_at = Column(DateTime(timezone=True), nullable=False)

    ledger = relationship("UsageLedger", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint('ledger_id', 'period_start', name='uq_ledger_period'),
        Index('idx_snapshot_account_period', 'account_id', 'period_start'),
    )
