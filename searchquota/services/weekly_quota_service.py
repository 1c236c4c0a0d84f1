"""
Weekly job discovery quota.

One record per account per Monday-start week, holding the tier's weekly cap
snapshotted at creation, the number of jobs consumed, and an append-only list
of the search runs that consumed them. Deleting a search only flags its runs;
consumed never goes down.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from searchquota.core.config import ADMIT_MAX_RETRIES
from searchquota.core.exceptions import WindowComputationError
from searchquota.core.plan_limits import get_weekly_limit, is_unlimited
from searchquota.core.time_windows import WeekWindow, as_utc, utc_now, window_for
from searchquota.db.models.weekly_quota import WeeklyJobQuota, WeeklySearchRun
from searchquota.services.usage_ledger_service import get_tier_for_account

logger = logging.getLogger(__name__)


@dataclass
class Admission:
    admitted: int
    consumed: int
    limit: int
    remaining: int
    limit_reached: bool
    run_id: str
    requested: int
    week_start: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass
class WeeklyStats:
    consumed: int
    limit: int
    remaining: int
    limit_reached: bool
    week_start: Optional[datetime]
    week_end: Optional[datetime]
    week_year: Optional[int] = None
    week_number: Optional[int] = None
    runs: List[dict] = field(default_factory=list)
    fallback: bool = False


def _remaining(limit: int, consumed: int) -> int:
    if is_unlimited(limit):
        return -1
    return max(0, limit - consumed)


def _limit_reached(limit: int, consumed: int) -> bool:
    return not is_unlimited(limit) and consumed >= limit


def serialize_run(run: WeeklySearchRun) -> dict:
    return {
        "run_id": run.run_id,
        "run_date": as_utc(run.run_date),
        "kept": run.kept,
        "label": run.label,
        "deleted": run.deleted,
        "deleted_at": as_utc(run.deleted_at) if run.deleted_at else None,
    }


def find_weekly_record(db: Session, account_id: str, week_start: datetime) -> Optional[WeeklyJobQuota]:
    return db.query(WeeklyJobQuota).filter(
        WeeklyJobQuota.account_id == account_id,
        WeeklyJobQuota.week_start == week_start,
    ).first()


def get_or_create(
    db: Session,
    account_id: str,
    tier: str,
    limit: int,
    now: Optional[datetime] = None,
) -> WeeklyJobQuota:
    """
    Get the account's record for the current week, creating a zeroed one if absent.

    Concurrent first touches race on the (account_id, week_start) unique
    constraint; the loser rolls back and reads the winner's record, so the
    week always resolves to a single record.

    Args:
        db: Database session
        account_id: Account ID
        tier: Subscription tier recorded on the new record
        limit: Weekly cap snapshotted into a new record

    Returns:
        The week's WeeklyJobQuota
    """
    now = as_utc(now or utc_now())
    window = window_for(now)

    record = find_weekly_record(db, account_id, window.week_start)
    if record:
        return record

    record = WeeklyJobQuota(
        account_id=account_id,
        tier=tier,
        week_start=window.week_start,
        week_end=window.week_end,
        week_year=window.week_year,
        week_number=window.week_number,
        limit=limit,
        consumed=0,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(f"Weekly record created concurrently, reusing: account_id={account_id}, week_start={window.week_start}")
        return find_weekly_record(db, account_id, window.week_start)

    db.refresh(record)
    logger.info(
        f"Weekly quota record created: account_id={account_id}, week={window.week_year}-W{window.week_number}, "
        f"limit={limit}, tier={tier}"
    )
    return record


def admit(
    db: Session,
    account_id: str,
    run_id: str,
    requested: int,
    label: Optional[str] = None,
    tier: Optional[str] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    max_retries: int = ADMIT_MAX_RETRIES,
    commit: bool = True,
) -> Admission:
    """
    Admit as many of the requested jobs as the week's remaining quota allows.

    admitted = max(0, min(requested, limit - consumed)). Whatever exceeds the
    remaining quota is dropped, not carried over. Nothing is written when
    admitted is 0.

    The increment is a single conditional UPDATE that only applies while
    consumed + admitted still fits under limit; if a concurrent admission got
    there first, the record is re-read and the amount recomputed.

    With commit=False the increment and the run entry are only flushed, so
    they commit or roll back together with the caller's transaction. The
    week's record must already exist in that case (see get_or_create).

    Returns:
        Admission; limit_reached is True when the week is exhausted after
        (or before) this call
    """
    now = as_utc(now or utc_now())
    tier = tier or get_tier_for_account(db, account_id)
    if limit is None:
        limit = get_weekly_limit(tier)

    record = get_or_create(db, account_id, tier, limit, now)
    record_id = record.id
    week_start = as_utc(record.week_start)
    requested = max(0, requested)

    for attempt in range(max_retries):
        consumed, record_limit = record.consumed, record.limit
        if is_unlimited(record_limit):
            admitted = requested
        else:
            admitted = max(0, min(requested, record_limit - consumed))

        if admitted <= 0:
            reached = _limit_reached(record_limit, consumed)
            if reached:
                logger.warning(
                    f"Weekly limit already reached: account_id={account_id}, run_id={run_id}, "
                    f"consumed={consumed}/{record_limit}"
                )
            return Admission(
                admitted=0,
                consumed=consumed,
                limit=record_limit,
                remaining=_remaining(record_limit, consumed),
                limit_reached=reached,
                run_id=run_id,
                requested=requested,
                week_start=week_start,
                reason="weekly_limit_reached" if reached else "nothing_requested",
            )

        conditions = [WeeklyJobQuota.id == record_id]
        if not is_unlimited(record_limit):
            conditions.append(WeeklyJobQuota.consumed + admitted <= WeeklyJobQuota.limit)

        result = db.execute(
            update(WeeklyJobQuota)
            .where(*conditions)
            .values(consumed=WeeklyJobQuota.consumed + admitted, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.add(WeeklySearchRun(
                quota_id=record_id,
                run_id=run_id,
                run_date=now,
                kept=admitted,
                label=label,
                deleted=False,
            ))
            if commit:
                db.commit()
            else:
                db.flush()
            db.refresh(record)

            logger.info(
                f"Admitted {admitted}/{requested} jobs: account_id={account_id}, run_id={run_id}, "
                f"consumed={record.consumed}/{record.limit}"
            )
            return Admission(
                admitted=admitted,
                consumed=record.consumed,
                limit=record.limit,
                remaining=_remaining(record.limit, record.consumed),
                limit_reached=_limit_reached(record.limit, record.consumed),
                run_id=run_id,
                requested=requested,
                week_start=week_start,
            )

        # Lost the race to a concurrent admission; re-read and recompute
        if commit:
            db.rollback()
        else:
            db.refresh(record)
        logger.debug(f"Admission conflict, retrying: account_id={account_id}, attempt={attempt + 1}")

    logger.warning(f"Admission gave up after {max_retries} conflicts: account_id={account_id}, run_id={run_id}")
    return Admission(
        admitted=0,
        consumed=record.consumed,
        limit=record.limit,
        remaining=_remaining(record.limit, record.consumed),
        limit_reached=_limit_reached(record.limit, record.consumed),
        run_id=run_id,
        requested=requested,
        week_start=week_start,
        reason="contention",
    )


def soft_delete_run(db: Session, account_id: str, run_id: str, now: Optional[datetime] = None) -> bool:
    """
    Flag a run in the current week's record as deleted.

    kept and consumed are left untouched. Every entry of the run in the
    current week is flagged.

    Returns:
        False if the run has no entry in the current week's record
    """
    now = as_utc(now or utc_now())
    window = window_for(now)

    record = find_weekly_record(db, account_id, window.week_start)
    if record is None:
        logger.info(f"No weekly record to soft delete from: account_id={account_id}, run_id={run_id}")
        return False

    result = db.execute(
        update(WeeklySearchRun)
        .where(
            WeeklySearchRun.quota_id == record.id,
            WeeklySearchRun.run_id == run_id,
            WeeklySearchRun.deleted.is_(False),
        )
        .values(deleted=True, deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    modified = result.rowcount
    if modified == 0:
        db.rollback()
        exists = db.query(WeeklySearchRun.id).filter(
            WeeklySearchRun.quota_id == record.id,
            WeeklySearchRun.run_id == run_id,
        ).first() is not None
        if exists:
            logger.debug(f"Run already marked deleted: account_id={account_id}, run_id={run_id}")
            return True
        logger.info(f"Run not found in current week: account_id={account_id}, run_id={run_id}")
        return False

    db.execute(
        update(WeeklyJobQuota)
        .where(WeeklyJobQuota.id == record.id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    logger.info(f"Marked run as deleted in weekly tracking: account_id={account_id}, run_id={run_id}, entries={modified}")
    return True


def _zero_state(fallback_limit: int, window: Optional[WeekWindow], fallback: bool = False) -> WeeklyStats:
    return WeeklyStats(
        consumed=0,
        limit=fallback_limit,
        remaining=_remaining(fallback_limit, 0),
        limit_reached=_limit_reached(fallback_limit, 0),
        week_start=window.week_start if window else None,
        week_end=window.week_end if window else None,
        week_year=window.week_year if window else None,
        week_number=window.week_number if window else None,
        runs=[],
        fallback=fallback,
    )


def current_stats(
    db: Session,
    account_id: str,
    fallback_limit: int,
    now: Optional[datetime] = None,
) -> WeeklyStats:
    """
    Read-only snapshot of the current week.

    Never creates a record: without one, a zero-state view using
    fallback_limit is returned. If the week window cannot be computed the
    same zero-state view is returned with fallback=True, so a clock anomaly
    never blocks the user.
    """
    try:
        window = window_for(as_utc(now or utc_now()))
    except WindowComputationError as e:
        logger.warning(f"Week window unavailable, using permissive fallback: account_id={account_id}, error={e}")
        return _zero_state(fallback_limit, None, fallback=True)

    record = find_weekly_record(db, account_id, window.week_start)
    if record is None:
        return _zero_state(fallback_limit, window)

    return WeeklyStats(
        consumed=record.consumed,
        limit=record.limit,
        remaining=_remaining(record.limit, record.consumed),
        limit_reached=_limit_reached(record.limit, record.consumed),
        week_start=window.week_start,
        week_end=window.week_end,
        week_year=record.week_year,
        week_number=record.week_number,
        runs=[serialize_run(run) for run in record.runs],
    )


def weekly_summary(record: WeeklyJobQuota) -> dict:
    """Dashboard summary of one weekly record."""
    runs = list(record.runs)
    deleted_runs = [run for run in runs if run.deleted]
    return {
        "account_id": record.account_id,
        "week_start": as_utc(record.week_start),
        "week_end": as_utc(record.week_end),
        "week_year": record.week_year,
        "week_number": record.week_number,
        "consumed": record.consumed,
        "limit": record.limit,
        "remaining": _remaining(record.limit, record.consumed),
        "percentage": round(record.consumed / record.limit * 100) if record.limit > 0 else 0,
        "limit_reached": _limit_reached(record.limit, record.consumed),
        "tier": record.tier,
        "total_runs": len(runs),
        "active_runs": len(runs) - len(deleted_runs),
        "deleted_runs": len(deleted_runs),
    }


def weekly_history(db: Session, account_id: str, weeks: int = 12) -> List[dict]:
    """Summaries of the account's weekly records, newest first."""
    records = db.query(WeeklyJobQuota).filter(
        WeeklyJobQuota.account_id == account_id
    ).order_by(WeeklyJobQuota.week_start.desc()).limit(weeks).all()
    return [weekly_summary(record) for record in records]
