"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from searchquota.db.models.subscription import Subscription
from searchquota.db.models.usage import UsageLedger, UsageCounter, UsageSnapshot
from searchquota.db.models.weekly_quota import WeeklyJobQuota, WeeklySearchRun
from searchquota.db.models.ai_job_search import AiJobSearch, AiSearchReasoningLog, SearchStatus

# Explicitly export all models for clarity
__all__ = [
    "Subscription",
    "UsageLedger",
    "UsageCounter",
    "UsageSnapshot",
    "WeeklyJobQuota",
    "WeeklySearchRun",
    "AiJobSearch",
    "AiSearchReasoningLog",
    "SearchStatus",
]
