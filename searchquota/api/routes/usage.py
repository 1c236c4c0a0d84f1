"""
Usage tracking endpoints.

Provides usage statistics and quota information for an account. Every
endpoint here is read-only: none of them creates ledgers or weekly records.
"""
import logging
from dataclasses import asdict
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from searchquota.core.config import USAGE_HISTORY_MONTHS
from searchquota.core.plan_limits import get_weekly_limit
from searchquota.core.quota_guard import get_account
from searchquota.db.session import get_db
from searchquota.schemas.usage import (
    QuotaCheckRequest,
    QuotaCheckResponse,
    UsageHistoryResponse,
    UsageResponse,
    UsageWarningsResponse,
    WeeklyHistoryResponse,
)
from searchquota.services import usage_ledger_service, weekly_quota_service
from searchquota.services.quota_gate import AccountRef, QuotaGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["Usage"])


@router.get("/{account_id}/usage", response_model=UsageResponse, status_code=status.HTTP_200_OK)
def get_usage(
    account: AccountRef = Depends(get_account),
    db: Session = Depends(get_db)
):
    """
    Get current period usage for an account.

    Returns:
    - plan: Current plan (free, casual, hunter)
    - month_key: Current period in YYYY-MM format
    - features: Per-kind limit, used, remaining, unlimited, percentage
    - weekly: Current week's job discovery quota
    - warnings: Kinds at 80% or more of their limit
    """
    usage_data = QuotaGate(db).usage_summary(account)

    logger.debug(f"Usage summary requested: account_id={account.id}, plan={usage_data['plan']}")

    return usage_data


@router.get("/{account_id}/usage/history", response_model=UsageHistoryResponse)
def get_usage_history(
    account_id: str,
    months: int = Query(USAGE_HISTORY_MONTHS, ge=1, le=120),
    db: Session = Depends(get_db)
):
    """Archived monthly periods, newest first."""
    return {
        "account_id": account_id,
        "history": usage_ledger_service.usage_history(db, account_id, months),
    }


@router.get("/{account_id}/usage/warnings", response_model=UsageWarningsResponse)
def get_usage_warnings(
    account: AccountRef = Depends(get_account),
    db: Session = Depends(get_db)
):
    """Monthly kinds at 80% (warning) or 95% (critical) of their limit."""
    return {
        "account_id": account.id,
        "plan": account.tier,
        "warnings": QuotaGate(db).usage_warnings(account),
    }


@router.get("/{account_id}/weekly-quota", response_model=WeeklyHistoryResponse)
def get_weekly_quota(
    account: AccountRef = Depends(get_account),
    weeks: int = Query(12, ge=1, le=104),
    db: Session = Depends(get_db)
):
    """Current week's discovery quota plus past weeks, newest first."""
    current = weekly_quota_service.current_stats(db, account.id, get_weekly_limit(account.tier))
    return {
        "account_id": account.id,
        "current": asdict(current),
        "history": weekly_quota_service.weekly_history(db, account.id, weeks),
    }


@router.post("/{account_id}/quota/check", response_model=QuotaCheckResponse)
def check_quota(
    payload: QuotaCheckRequest,
    account: AccountRef = Depends(get_account),
    db: Session = Depends(get_db)
):
    """
    Check several requirements at once without consuming anything.

    Every failing requirement is reported so the caller can show the
    complete picture.
    """
    result = QuotaGate(db).check_multiple(
        account,
        [{"kind": item.kind, "quantity": item.quantity} for item in payload.requirements],
    )
    return {
        **result.to_detail(),
        "decisions": [decision.to_detail() for decision in result.decisions],
    }
