"""
Usage ledger service for monthly per-account counters.

Handles limit checks, usage commits, lazy monthly rollover and history reads.
Counts only move through single UPDATE statements so concurrent commits
cannot lose increments.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from searchquota.core.config import USAGE_HISTORY_MONTHS
from searchquota.core.logging_config import sanitize_log_data
from searchquota.core.plan_limits import (
    DEFAULT_TIER,
    MONTHLY_KINDS,
    get_plan_limit,
    get_tier_limits,
    is_unlimited,
    normalize_tier,
)
from searchquota.core.time_windows import add_months, as_utc, month_key, month_start, utc_now
from searchquota.db.models.subscription import Subscription
from searchquota.db.models.usage import UsageCounter, UsageLedger, UsageSnapshot

logger = logging.getLogger(__name__)

TierLimits = Callable[[Optional[str]], Dict[str, int]]

WARNING_PERCENTAGE = 80
CRITICAL_PERCENTAGE = 95


@dataclass
class LedgerCheck:
    allowed: bool
    kind: str
    quantity: int
    current: int
    limit: int
    remaining: int  # -1 for unlimited
    reason: Optional[str] = None


@dataclass
class LedgerCommit:
    kind: str
    quantity: int
    new_total: int
    limit: int
    remaining: int  # -1 for unlimited


def get_tier_for_account(db: Session, account_id: str) -> str:
    """
    Get an account's subscription tier, defaulting to 'free' if none exists.

    Args:
        db: Database session
        account_id: Account ID

    Returns:
        Tier string (free, casual, hunter)
    """
    try:
        subscription = db.query(Subscription).filter(Subscription.account_id == account_id).first()
        if not subscription:
            return DEFAULT_TIER
        return normalize_tier(subscription.tier)
    except Exception as e:
        # Handle schema mismatch gracefully - use raw SQL if ORM fails
        logger.warning(f"ORM query failed for subscription (schema mismatch?), using raw SQL: {e}")
        db.rollback()
        try:
            result = db.execute(
                text("SELECT tier FROM subscriptions WHERE account_id = :account_id LIMIT 1"),
                {"account_id": account_id}
            ).fetchone()
            if result and result[0]:
                return normalize_tier(result[0])
            return DEFAULT_TIER
        except Exception as sql_error:
            logger.error(f"Raw SQL also failed: {sql_error}")
            db.rollback()
            return DEFAULT_TIER


def find_ledger(db: Session, account_id: str) -> Optional[UsageLedger]:
    return db.query(UsageLedger).filter(UsageLedger.account_id == account_id).first()


def get_or_create_ledger(db: Session, account_id: str, now: Optional[datetime] = None) -> UsageLedger:
    """
    Get the account's ledger, creating it on first use.

    A concurrent first touch loses on the unique account_id constraint and
    re-reads the winner's row.
    """
    ledger = find_ledger(db, account_id)
    if ledger:
        return ledger

    now = now or utc_now()
    ledger = UsageLedger(account_id=account_id, period_start=month_start(now))
    db.add(ledger)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        ledger = find_ledger(db, account_id)
        logger.debug(f"Ledger created concurrently, reusing: account_id={account_id}")
        return ledger

    db.refresh(ledger)
    logger.info(f"Usage ledger created: account_id={account_id}, period_start={ledger.period_start}")
    return ledger


def get_period_counts(db: Session, ledger_id: int) -> Dict[str, int]:
    """Current-period counts for every kind that has a counter row."""
    rows = db.query(UsageCounter.kind, UsageCounter.count).filter(UsageCounter.ledger_id == ledger_id).all()
    return {kind: int(count) for kind, count in rows}


def get_current_count(db: Session, account_id: str, kind: str) -> int:
    count = db.query(UsageCounter.count).join(
        UsageLedger, UsageCounter.ledger_id == UsageLedger.id
    ).filter(
        UsageLedger.account_id == account_id,
        UsageCounter.kind == kind,
    ).scalar()
    return int(count or 0)


def rollover_if_due(db: Session, account_id: str, now: Optional[datetime] = None) -> bool:
    """
    Archive the current period and zero its counters once a month has elapsed.

    The period is claimed with a conditional update on period_start, so when
    several callers observe the same due period only one of them archives it.
    Calling again within the new period is a no-op.

    Returns:
        True if this call performed the rollover
    """
    ledger = find_ledger(db, account_id)
    if ledger is None:
        return False

    now = as_utc(now or utc_now())
    stored_start = ledger.period_start
    period_start = as_utc(stored_start)
    if now < add_months(period_start, 1):
        return False

    ledger_id = ledger.id
    new_start = month_start(now)
    result = db.execute(
        update(UsageLedger)
        .where(UsageLedger.id == ledger_id, UsageLedger.period_start == stored_start)
        .values(period_start=new_start)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        logger.debug(f"Rollover already performed by another caller: account_id={account_id}")
        return False

    counts = get_period_counts(db, ledger_id)
    db.add(UsageSnapshot(
        ledger_id=ledger_id,
        account_id=account_id,
        period_start=period_start,
        period_end=new_start,
        month_key=month_key(period_start),
        counts=counts,
        archived_at=now,
    ))
    db.execute(
        update(UsageCounter)
        .where(UsageCounter.ledger_id == ledger_id)
        .values(count=0)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    logger.info(
        f"Usage period rolled over: account_id={account_id}, "
        f"archived={month_key(period_start)}, new_period={month_key(new_start)}, counts={counts}"
    )
    return True


def check(
    db: Session,
    account_id: str,
    kind: str,
    quantity: int = 1,
    tier: Optional[str] = None,
    tier_limits: TierLimits = get_tier_limits,
    now: Optional[datetime] = None,
) -> LedgerCheck:
    """
    Check whether quantity more of kind fits in the account's monthly limit.

    Does not change any count. A due rollover is applied first so the check
    never reads a stale period.

    Returns:
        LedgerCheck with reason "not_included_in_plan" when the limit is 0
        and "limit_exceeded" when current + quantity would pass the limit
    """
    tier = tier or get_tier_for_account(db, account_id)
    rollover_if_due(db, account_id, now)

    limit = tier_limits(tier).get(kind, 0)
    current = get_current_count(db, account_id, kind)

    if is_unlimited(limit):
        return LedgerCheck(True, kind, quantity, current, limit, -1)

    remaining = max(0, limit - current)
    if limit == 0:
        return LedgerCheck(False, kind, quantity, current, limit, 0, reason="not_included_in_plan")
    if current + quantity > limit:
        return LedgerCheck(False, kind, quantity, current, limit, remaining, reason="limit_exceeded")
    return LedgerCheck(True, kind, quantity, current, limit, remaining)


def _increment_counter(db: Session, ledger_id: int, kind: str, quantity: int) -> None:
    for _ in range(3):
        result = db.execute(
            update(UsageCounter)
            .where(UsageCounter.ledger_id == ledger_id, UsageCounter.kind == kind)
            .values(count=UsageCounter.count + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            db.commit()
            return

        db.add(UsageCounter(ledger_id=ledger_id, kind=kind, count=quantity))
        try:
            db.commit()
            return
        except IntegrityError:
            # Another commit created the counter first; increment it instead
            db.rollback()

    raise RuntimeError(f"Could not increment usage counter ledger_id={ledger_id}, kind={kind}")


def commit(
    db: Session,
    account_id: str,
    kind: str,
    quantity: int = 1,
    metadata: Optional[dict] = None,
    tier: Optional[str] = None,
    tier_limits: TierLimits = get_tier_limits,
    now: Optional[datetime] = None,
) -> LedgerCommit:
    """
    Record usage of kind for the current period.

    Does not re-validate the limit: callers are expected to have called
    check() before performing the action.

    Returns:
        LedgerCommit with the new total and remaining quota (-1 for unlimited)
    """
    tier = tier or get_tier_for_account(db, account_id)
    rollover_if_due(db, account_id, now)
    ledger = get_or_create_ledger(db, account_id, now)

    _increment_counter(db, ledger.id, kind, quantity)

    new_total = get_current_count(db, account_id, kind)
    limit = tier_limits(tier).get(kind, 0)
    remaining = -1 if is_unlimited(limit) else max(0, limit - new_total)

    logger.info(
        f"Usage committed: account_id={account_id}, kind={kind}, quantity={quantity}, "
        f"total={new_total}, limit={limit}, tier={tier}, metadata={sanitize_log_data(metadata or {})}"
    )
    return LedgerCommit(kind, quantity, new_total, limit, remaining)


def usage_history(db: Session, account_id: str, months: int = USAGE_HISTORY_MONTHS) -> List[dict]:
    """Archived periods, newest first."""
    snapshots = db.query(UsageSnapshot).filter(
        UsageSnapshot.account_id == account_id
    ).order_by(UsageSnapshot.period_start.desc()).limit(months).all()

    return [
        {
            "month_key": snapshot.month_key,
            "period_start": as_utc(snapshot.period_start),
            "period_end": as_utc(snapshot.period_end),
            "counts": dict(snapshot.counts or {}),
        }
        for snapshot in snapshots
    ]


def get_usage_for_response(
    db: Session,
    account_id: str,
    tier: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Get usage data formatted for the dashboard usage response.

    Returns:
        Dictionary with plan, month_key, period_start and a features dict
    """
    tier = tier or get_tier_for_account(db, account_id)
    rollover_if_due(db, account_id, now)

    ledger = find_ledger(db, account_id)
    counts = get_period_counts(db, ledger.id) if ledger else {}
    period_start = as_utc(ledger.period_start) if ledger else month_start(now or utc_now())
    features = {}
    for kind in MONTHLY_KINDS:
        limit = get_plan_limit(tier, kind)
        used = counts.get(kind, 0)

        if is_unlimited(limit):
            features[kind] = {
                "limit": limit,
                "used": used,
                "remaining": None,
                "unlimited": True,
                "percentage": 0,
            }
            continue

        features[kind] = {
            "limit": limit,
            "used": used,
            "remaining": max(0, limit - used),
            "unlimited": False,
            "percentage": round(used / limit * 100) if limit > 0 else 0,
        }

    return {
        "plan": normalize_tier(tier),
        "month_key": month_key(period_start),
        "period_start": period_start,
        "features": features,
    }


def get_usage_warnings(usage: Dict) -> List[dict]:
    """Kinds at or above 80% of their limit, flagged critical from 95%."""
    warnings = []
    for kind, stat in usage["features"].items():
        if stat["unlimited"] or stat["limit"] <= 0:
            continue
        if stat["percentage"] >= WARNING_PERCENTAGE:
            warnings.append({
                "kind": kind,
                "percentage": stat["percentage"],
                "used": stat["used"],
                "limit": stat["limit"],
                "remaining": stat["remaining"],
                "severity": "critical" if stat["percentage"] >= CRITICAL_PERCENTAGE else "warning",
            })
    return warnings
