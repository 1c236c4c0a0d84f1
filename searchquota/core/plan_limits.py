"""
Plan-based usage limits configuration.

Single source of truth for quota limits per subscription tier.
UNLIMITED (-1) means no cap for that kind; 0 means the kind is not
included in the plan.
"""
from typing import Dict, List, Optional

UNLIMITED = -1
DEFAULT_TIER = "free"

# Tiers in upgrade order
TIER_ORDER: List[str] = ["free", "casual", "hunter"]

# Kinds counted against the monthly usage ledger
MONTHLY_KINDS: List[str] = [
    "resume_uploads",
    "resume_analysis",
    "job_imports",
    "resume_tailoring",
    "recruiter_unlocks",
    "ai_job_searches",
    "ai_conversations",
    "ai_messages_total",
]

# Kinds counted against the weekly quota record
WEEKLY_KINDS: List[str] = [
    "ai_job_discovery",
]

# Plan limits (per calendar month)
PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {
        "resume_uploads": 1,
        "resume_analysis": 1,
        "job_imports": 3,
        "resume_tailoring": 1,
        "recruiter_unlocks": 0,
        "ai_job_searches": 0,
        "ai_conversations": 0,
        "ai_messages_total": 0,
    },
    "casual": {
        "resume_uploads": 5,
        "resume_analysis": 5,
        "job_imports": 25,
        "resume_tailoring": 25,
        "recruiter_unlocks": 25,
        "ai_job_searches": 1,
        "ai_conversations": 0,
        "ai_messages_total": 0,
    },
    "hunter": {
        "resume_uploads": UNLIMITED,
        "resume_analysis": UNLIMITED,
        "job_imports": UNLIMITED,
        "resume_tailoring": 50,
        "recruiter_unlocks": UNLIMITED,
        "ai_job_searches": UNLIMITED,
        "ai_conversations": 5,
        "ai_messages_total": 100,
    },
}

# Jobs an AI search may keep per week, across all of an account's searches
WEEKLY_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"ai_job_discovery": 0},
    "casual": {"ai_job_discovery": 50},
    "hunter": {"ai_job_discovery": 100},
}

# Jobs a single AI search may keep per UTC day
DAILY_SEARCH_LIMITS: Dict[str, int] = {
    "free": 0,
    "casual": 10,
    "hunter": 25,
}

# Coarse abuse protection, requests per hour
HOURLY_RATE_LIMITS: Dict[str, int] = {
    "ai_job_searches": 5,
    "job_imports": 30,
    "ai_messages_total": 60,
}

# Cheapest plan that unlocks (or raises) a kind
RECOMMENDED_PLANS: Dict[str, str] = {
    "resume_uploads": "casual",
    "resume_analysis": "casual",
    "job_imports": "casual",
    "resume_tailoring": "casual",
    "recruiter_unlocks": "casual",
    "ai_job_searches": "casual",
    "ai_job_discovery": "casual",
    "ai_conversations": "hunter",
    "ai_messages_total": "hunter",
}


def normalize_tier(tier: Optional[str]) -> str:
    """Lowercase a tier name, falling back to free for unknown tiers."""
    tier = tier.lower() if tier else DEFAULT_TIER
    return tier if tier in PLAN_LIMITS else DEFAULT_TIER


def get_tier_limits(tier: Optional[str]) -> Dict[str, int]:
    """
    Get every monthly and weekly limit for a tier.
    
    Args:
        tier: Subscription tier (free, casual, hunter)
        
    Returns:
        Mapping of kind -> limit, where -1 means unlimited
    """
    tier = normalize_tier(tier)
    limits = dict(PLAN_LIMITS[tier])
    limits.update(WEEKLY_LIMITS[tier])
    return limits


def get_plan_limit(tier: Optional[str], kind: str) -> int:
    """Get the limit for one kind; unknown kinds are not included (0)."""
    return get_tier_limits(tier).get(kind, 0)


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def is_weekly_kind(kind: str) -> bool:
    return kind in WEEKLY_KINDS


def get_daily_search_limit(tier: Optional[str]) -> int:
    return DAILY_SEARCH_LIMITS[normalize_tier(tier)]


def get_weekly_limit(tier: Optional[str], kind: str = "ai_job_discovery") -> int:
    return WEEKLY_LIMITS[normalize_tier(tier)].get(kind, 0)


def get_hourly_rate_limit(kind: str, default: int) -> int:
    return HOURLY_RATE_LIMITS.get(kind, default)


def get_recommended_plan(kind: str) -> str:
    return RECOMMENDED_PLANS.get(kind, "casual")
