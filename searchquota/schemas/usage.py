"""
Pydantic schemas for usage and weekly quota endpoints.
"""
from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class FeatureUsageDetail(BaseModel):
    """Monthly usage for a single kind."""
    limit: int = Field(..., description="Monthly limit (-1 for unlimited, 0 if not included)")
    used: int = Field(..., description="Current period usage")
    remaining: Optional[int] = Field(None, description="Remaining quota (None for unlimited)")
    unlimited: bool = Field(..., description="Whether this kind has unlimited quota")
    percentage: int = Field(0, description="Share of the limit used, 0-100+")

    class Config:
        json_schema_extra = {
            "example": {
                "limit": 25,
                "used": 5,
                "remaining": 20,
                "unlimited": False,
                "percentage": 20
            }
        }


class UsageWarning(BaseModel):
    """A kind that is close to its monthly limit."""
    kind: str = Field(..., description="Usage kind")
    percentage: int = Field(..., description="Share of the limit used")
    used: int
    limit: int
    remaining: Optional[int] = None
    severity: str = Field(..., description="warning (80%+) or critical (95%+)")


class WeeklyRunEntry(BaseModel):
    """One search run that consumed weekly discovery quota."""
    run_id: str
    run_date: datetime
    kept: int = Field(..., description="Jobs admitted from this run, unchanged by deletion")
    label: Optional[str] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None


class WeeklyStatsResponse(BaseModel):
    """Current week's job discovery quota."""
    consumed: int = Field(..., description="Jobs kept this week, including deleted runs")
    limit: int = Field(..., description="Weekly cap snapshotted when the week started")
    remaining: int = Field(..., description="Jobs still admissible this week (-1 for unlimited)")
    limit_reached: bool
    week_start: Optional[datetime] = Field(None, description="Monday 00:00:00.000 UTC")
    week_end: Optional[datetime] = Field(None, description="Sunday 23:59:59.999 UTC")
    week_year: Optional[int] = None
    week_number: Optional[int] = None
    runs: List[WeeklyRunEntry] = Field(default_factory=list)
    fallback: bool = Field(False, description="True when the week could not be computed and a permissive default was used")

    class Config:
        json_schema_extra = {
            "example": {
                "consumed": 50,
                "limit": 50,
                "remaining": 0,
                "limit_reached": True,
                "week_start": "2026-01-12T00:00:00Z",
                "week_end": "2026-01-18T23:59:59.999000Z",
                "week_year": 2026,
                "week_number": 3,
                "runs": [
                    {
                        "run_id": "12",
                        "run_date": "2026-01-13T09:30:00Z",
                        "kept": 25,
                        "label": "Backend roles",
                        "deleted": True,
                        "deleted_at": "2026-01-14T08:00:00Z"
                    }
                ],
                "fallback": False
            }
        }


class UsageResponse(BaseModel):
    """Response schema for GET /accounts/{account_id}/usage."""
    plan: str = Field(..., description="Current plan (free, casual, hunter)")
    month_key: str = Field(..., description="Current period in YYYY-MM format")
    period_start: datetime = Field(..., description="Start of the current monthly period")
    features: Dict[str, FeatureUsageDetail] = Field(..., description="Per-kind monthly usage")
    weekly: WeeklyStatsResponse = Field(..., description="Weekly job discovery quota")
    warnings: List[UsageWarning] = Field(default_factory=list)


class UsageHistoryEntry(BaseModel):
    """An archived monthly period."""
    month_key: str
    period_start: datetime
    period_end: datetime
    counts: Dict[str, int]


class UsageHistoryResponse(BaseModel):
    account_id: str
    history: List[UsageHistoryEntry]


class UsageWarningsResponse(BaseModel):
    """Kinds at 80% or more of their monthly limit."""
    account_id: str
    plan: str
    warnings: List[UsageWarning] = Field(default_factory=list)


class WeeklySummary(BaseModel):
    """Dashboard summary of one weekly record."""
    week_start: datetime
    week_end: datetime
    week_year: int
    week_number: int
    consumed: int
    limit: int
    remaining: int
    percentage: int
    limit_reached: bool
    tier: str
    total_runs: int
    active_runs: int
    deleted_runs: int


class WeeklyHistoryResponse(BaseModel):
    account_id: str
    current: WeeklyStatsResponse
    history: List[WeeklySummary]


class QuotaExceededResponse(BaseModel):
    """Error detail for a denied quota check."""
    error: str = Field("quota_exceeded", description="Error code")
    kind: str = Field(..., description="Kind that exceeded quota")
    plan: str = Field(..., description="Account's current plan")
    window: str = Field(..., description="monthly or weekly")
    reason: Optional[str] = Field(None, description="limit_exceeded, weekly_limit_reached or not_included_in_plan")
    limit: int = Field(..., description="Limit for this kind")
    current: int = Field(..., description="Current usage in the window")
    remaining: int = Field(..., description="Remaining quota (0 if exceeded)")
    message: str = Field(..., description="Human-readable error message")
    recommended_plan: Optional[str] = None
    upgrade_url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "error": "quota_exceeded",
                "kind": "ai_job_searches",
                "plan": "free",
                "window": "monthly",
                "reason": "not_included_in_plan",
                "limit": 0,
                "current": 0,
                "remaining": 0,
                "message": "Ai job searches is not included in the Free plan. Upgrade to unlock.",
                "recommended_plan": "casual",
                "upgrade_url": "http://localhost:3000/pricing"
            }
        }


class QuotaRequirement(BaseModel):
    kind: str = Field(..., description="Usage kind to check")
    quantity: int = Field(1, description="Amount the action would consume", ge=1)


class QuotaCheckRequest(BaseModel):
    """Batch of requirements checked together."""
    requirements: List[QuotaRequirement] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "requirements": [
                    {"kind": "job_imports", "quantity": 3},
                    {"kind": "ai_job_discovery", "quantity": 20}
                ]
            }
        }


class QuotaDecisionDetail(BaseModel):
    allowed: bool
    kind: str
    quantity: int
    current: int
    limit: int
    remaining: int
    plan: str
    window: str
    reason: Optional[str] = None
    message: Optional[str] = None
    recommended_plan: Optional[str] = None
    upgrade_url: Optional[str] = None
    fallback: bool = False


class QuotaCheckResponse(BaseModel):
    """Every requirement's decision; failed_checks lists all denials, not just the first."""
    allowed: bool
    decisions: List[QuotaDecisionDetail]
    failed_checks: List[QuotaDecisionDetail]
    upgrade_required: bool
