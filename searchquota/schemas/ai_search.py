"""
Pydantic schemas for AI job search endpoints.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class AiSearchCreate(BaseModel):
    """Schema for starting a new AI job search."""
    name: str = Field(..., description="Search name, shown in weekly run history", min_length=1, max_length=255)
    daily_limit: Optional[int] = Field(
        None,
        description="Jobs the search may keep per day (defaults to the plan's daily limit)",
        ge=0,
    )

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Backend roles in Berlin",
                "daily_limit": 10
            }
        }


class ProgressReportRequest(BaseModel):
    """Batch of jobs discovered by the search worker."""
    found: int = Field(..., description="Jobs discovered in this batch", ge=0)


class FatalErrorRequest(BaseModel):
    error: str = Field(..., description="Error reported by the search worker", min_length=1)


class ReasoningLogEntry(BaseModel):
    phase: str = Field(..., description="initialization, job_saving, completion, error, user_pause, ...")
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    timestamp: datetime


class AiSearchResponse(BaseModel):
    """Snapshot of an AI job search."""
    id: int
    account_id: str
    name: str
    tier: str
    status: str = Field(..., description="running, paused, completed, failed or cancelled")
    status_message: Optional[str] = None
    daily_limit: int
    jobs_found_today: int
    total_jobs_found: int
    week_ref: Optional[datetime] = Field(None, description="Start of the week the search last contributed to")
    created_at: datetime
    last_updated: datetime
    last_progress_at: datetime = Field(..., description="Last progress report; jobs_found_today resets when a report arrives on a later UTC day")
    reasoning_log: List[ReasoningLogEntry] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "id": 12,
                "account_id": "acct_123",
                "name": "Backend roles in Berlin",
                "tier": "casual",
                "status": "running",
                "status_message": "Kept 8 of 8 jobs",
                "daily_limit": 10,
                "jobs_found_today": 8,
                "total_jobs_found": 8,
                "week_ref": "2026-01-12T00:00:00Z",
                "created_at": "2026-01-13T09:00:00Z",
                "last_updated": "2026-01-13T09:30:00Z",
                "last_progress_at": "2026-01-13T09:30:00Z",
                "reasoning_log": [
                    {
                        "phase": "initialization",
                        "message": "AI job search 'Backend roles in Berlin' started",
                        "details": {"tier": "casual", "daily_limit": 10, "weekly_limit": 50},
                        "success": True,
                        "timestamp": "2026-01-13T09:00:00Z"
                    }
                ]
            }
        }


class ProgressReportResponse(BaseModel):
    """Result of applying a progress report."""
    applied: bool
    status: str
    found: int
    requested: int = Field(..., description="Jobs left after the daily clamp")
    kept: int = Field(..., description="Jobs left after the weekly clamp")
    dropped: int
    truncated_by: List[str] = Field(default_factory=list, description="Limits that cut the batch: daily, weekly")
    daily_limit_reached: bool
    weekly_limit_reached: bool
    search: AiSearchResponse
