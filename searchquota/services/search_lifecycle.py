"""
Background AI job search lifecycle.

A search is created running and moves through the states in
SearchLifecycle.TRANSITIONS. Each progress report is clamped twice, first by
the search's daily limit and then by the account's weekly discovery quota,
and leaves exactly one reasoning log entry behind. Status changes are
compare-and-set updates on the current status, so a concurrent cancel cannot
be overwritten by a late progress report.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from searchquota.core.exceptions import IllegalTransitionError
from searchquota.core.plan_limits import get_daily_search_limit, get_weekly_limit, normalize_tier
from searchquota.core.time_windows import as_utc, day_key, utc_now
from searchquota.db.models.ai_job_search import AiJobSearch, AiSearchReasoningLog, SearchStatus
from searchquota.services import weekly_quota_service
from searchquota.services.quota_gate import AccountRef

logger = logging.getLogger(__name__)

TERMINAL_STATES = {SearchStatus.COMPLETED, SearchStatus.FAILED, SearchStatus.CANCELLED}


@dataclass
class ProgressOutcome:
    applied: bool
    status: str
    found: int
    requested: int = 0
    kept: int = 0
    dropped: int = 0
    truncated_by: List[str] = field(default_factory=list)
    daily_limit_reached: bool = False
    weekly_limit_reached: bool = False
    reason: Optional[str] = None


def serialize_log(entry: AiSearchReasoningLog) -> dict:
    return {
        "phase": entry.phase,
        "message": entry.message,
        "details": dict(entry.details or {}),
        "success": entry.success,
        "timestamp": as_utc(entry.created_at),
    }


class SearchLifecycle:
    """State machine wrapper around one AiJobSearch row."""

    TRANSITIONS = {
        SearchStatus.RUNNING: [
            SearchStatus.PAUSED,
            SearchStatus.CANCELLED,
            SearchStatus.COMPLETED,
            SearchStatus.FAILED,
        ],
        SearchStatus.PAUSED: [SearchStatus.RUNNING, SearchStatus.CANCELLED],
        SearchStatus.COMPLETED: [],  # Terminal state
        SearchStatus.FAILED: [],  # Terminal state
        SearchStatus.CANCELLED: [],  # Terminal state
    }

    def __init__(self, db: Session, search: AiJobSearch, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.search = search
        self.clock = clock

    @classmethod
    def create(
        cls,
        db: Session,
        account: AccountRef,
        name: str,
        daily_limit: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "SearchLifecycle":
        """
        Start a new search in the running state.

        Args:
            db: Database session
            account: Owning account and its tier
            name: Display name, also used as the weekly run label
            daily_limit: Jobs the search may keep per UTC day; defaults to the tier's limit

        Returns:
            SearchLifecycle for the new search
        """
        now = clock()
        tier = normalize_tier(account.tier)
        if daily_limit is None:
            daily_limit = get_daily_search_limit(tier)

        search = AiJobSearch(
            account_id=account.id,
            tier=tier,
            name=name,
            status=SearchStatus.RUNNING.value,
            daily_limit=daily_limit,
            jobs_found_today=0,
            total_jobs_found=0,
            created_at=now,
            last_updated=now,
            last_progress_at=now,
        )
        db.add(search)
        db.flush()

        lifecycle = cls(db, search, clock)
        lifecycle._append_log(
            "initialization",
            f"AI job search '{name}' started",
            {"tier": tier, "daily_limit": daily_limit, "weekly_limit": get_weekly_limit(tier)},
            now=now,
        )
        db.commit()
        db.refresh(search)

        logger.info(
            f"AI job search created: search_id={search.id}, account_id={account.id}, "
            f"tier={tier}, daily_limit={daily_limit}"
        )
        return lifecycle

    @classmethod
    def load(
        cls,
        db: Session,
        search_id: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> Optional["SearchLifecycle"]:
        search = db.query(AiJobSearch).filter(AiJobSearch.id == search_id).first()
        if search is None:
            return None
        return cls(db, search, clock)

    @property
    def status(self) -> SearchStatus:
        return SearchStatus(self.search.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def can_transition(self, target: SearchStatus) -> bool:
        return target in self.TRANSITIONS.get(self.status, [])

    def _append_log(
        self,
        phase: str,
        message: str,
        details: Optional[dict] = None,
        success: bool = True,
        now: Optional[datetime] = None,
    ) -> None:
        self.db.add(AiSearchReasoningLog(
            search_id=self.search.id,
            phase=phase,
            message=message,
            details=details or {},
            success=success,
            created_at=now or self.clock(),
        ))

    def _transition(
        self,
        target: SearchStatus,
        phase: str,
        message: str,
        details: Optional[dict] = None,
        success: bool = True,
    ) -> bool:
        self.db.refresh(self.search)
        current = self.status
        if not self.can_transition(target):
            logger.warning(
                f"Illegal search transition refused: search_id={self.search.id}, "
                f"{current.value} -> {target.value}"
            )
            return False

        now = self.clock()
        result = self.db.execute(
            update(AiJobSearch)
            .where(AiJobSearch.id == self.search.id, AiJobSearch.status == current.value)
            .values(status=target.value, status_message=message, last_updated=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Status changed underneath us
            self.db.rollback()
            self.db.refresh(self.search)
            logger.warning(
                f"Search transition lost to a concurrent update: search_id={self.search.id}, "
                f"now={self.search.status}, wanted={target.value}"
            )
            return False

        self._append_log(phase, message, details, success, now=now)
        self.db.commit()
        self.db.refresh(self.search)

        logger.info(f"Search transitioned: search_id={self.search.id}, {current.value} -> {target.value}")
        return True

    def pause(self) -> bool:
        return self._transition(SearchStatus.PAUSED, "user_pause", "Search paused by user")

    def resume(self) -> bool:
        return self._transition(SearchStatus.RUNNING, "user_resume", "Search resumed by user")

    def cancel(self) -> bool:
        return self._transition(SearchStatus.CANCELLED, "user_cancellation", "Search cancelled by user")

    def fatal_error(self, error) -> bool:
        return self._transition(
            SearchStatus.FAILED,
            "error",
            f"Search failed: {error}",
            {"error": str(error)},
            success=False,
        )

    def apply(self, event: str) -> None:
        """
        Run a user-driven event by name.

        Raises:
            IllegalTransitionError: If the event is refused in the current state
            ValueError: If the event is unknown
        """
        handlers = {"pause": self.pause, "resume": self.resume, "cancel": self.cancel}
        if event not in handlers:
            raise ValueError(f"Unknown search event: {event}")
        if not handlers[event]():
            raise IllegalTransitionError(self.search.status, event)

    def _refused(self, found: int, **kwargs) -> ProgressOutcome:
        self.db.rollback()
        self.db.refresh(self.search)
        logger.warning(f"Progress report refused: search_id={self.search.id}, status={self.search.status}")
        kwargs.setdefault("dropped", found)
        return ProgressOutcome(
            applied=False,
            status=self.search.status,
            found=found,
            reason="illegal_transition",
            **kwargs,
        )

    def progress_report(self, found: int) -> ProgressOutcome:
        """
        Keep as many of a batch of discovered jobs as the daily and weekly limits allow.

        The daily clamp is applied first, then weekly admission. Whatever is
        cut by either limit is dropped. When both limits are reached after the
        batch, the search completes.

        The search row is claimed with a status-guarded update before anything
        is admitted, and the weekly increment, its run entry, the counters and
        the log entry commit in one transaction. A search that stops running
        mid-report therefore never leaves weekly quota consumed.

        Returns:
            ProgressOutcome; applied is False when the search is not running
        """
        self.db.refresh(self.search)
        search = self.search
        search_id = search.id
        found = max(0, found)

        if self.status != SearchStatus.RUNNING:
            return self._refused(found)

        now = self.clock()
        if found > 0:
            # Created up front: get_or_create commits, admission below must not
            weekly_quota_service.get_or_create(
                self.db, search.account_id, search.tier, get_weekly_limit(search.tier), now
            )

        try:
            claimed = self.db.execute(
                update(AiJobSearch)
                .where(AiJobSearch.id == search_id, AiJobSearch.status == SearchStatus.RUNNING.value)
                .values(last_updated=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                return self._refused(found)
            self.db.refresh(search)

            new_day = day_key(search.last_progress_at) != day_key(now)
            jobs_today = 0 if new_day else search.jobs_found_today

            # Daily clamp
            requested = min(found, max(0, search.daily_limit - jobs_today))
            truncated_by = []
            if requested < found:
                truncated_by.append("daily")

            # Weekly clamp
            if requested > 0:
                admission = weekly_quota_service.admit(
                    self.db, search.account_id, str(search_id), requested,
                    label=search.name, tier=search.tier, now=now, commit=False,
                )
                kept = admission.admitted
                weekly_reached = admission.limit_reached
                week_start = admission.week_start
            else:
                stats = weekly_quota_service.current_stats(
                    self.db, search.account_id, get_weekly_limit(search.tier), now=now
                )
                kept = 0
                weekly_reached = stats.limit_reached
                week_start = stats.week_start
            if kept < requested:
                truncated_by.append("weekly")

            daily_reached = jobs_today + kept >= search.daily_limit
            completed = daily_reached and weekly_reached
            target = SearchStatus.COMPLETED if completed else SearchStatus.RUNNING
            dropped = found - kept

            if completed:
                phase = "completion"
                message = f"Kept {kept} of {found} jobs; daily and weekly limits reached, search completed"
            else:
                phase = "job_saving"
                message = f"Kept {kept} of {found} jobs"

            values = {
                "jobs_found_today": jobs_today + kept,
                "total_jobs_found": AiJobSearch.total_jobs_found + kept,
                "status": target.value,
                "status_message": message,
                "last_updated": now,
                "last_progress_at": now,
            }
            if week_start is not None:
                values["week_ref"] = week_start

            result = self.db.execute(
                update(AiJobSearch)
                .where(AiJobSearch.id == search_id, AiJobSearch.status == SearchStatus.RUNNING.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Left the running state; the admission above is rolled back with it
                return self._refused(found, requested=requested, truncated_by=truncated_by)

            self._append_log(
                phase,
                message,
                {
                    "found": found,
                    "requested": requested,
                    "kept": kept,
                    "dropped": dropped,
                    "truncated_by": truncated_by,
                    "daily_limit_reached": daily_reached,
                    "weekly_limit_reached": weekly_reached,
                },
                now=now,
            )
            self.db.commit()
        except Exception:
            logger.exception(f"Progress report failed, nothing admitted: search_id={search_id}, found={found}")
            self.db.rollback()
            raise

        self.db.refresh(search)
        logger.info(
            f"Search progress: search_id={search_id}, found={found}, kept={kept}, "
            f"truncated_by={truncated_by}, status={search.status}"
        )
        return ProgressOutcome(
            applied=True,
            status=search.status,
            found=found,
            requested=requested,
            kept=kept,
            dropped=dropped,
            truncated_by=truncated_by,
            daily_limit_reached=daily_reached,
            weekly_limit_reached=weekly_reached,
        )

    def snapshot(self) -> dict:
        """Read-only view of state, counters and the reasoning log."""
        search = self.search
        return {
            "id": search.id,
            "account_id": search.account_id,
            "name": search.name,
            "tier": search.tier,
            "status": search.status,
            "status_message": search.status_message,
            "daily_limit": search.daily_limit,
            "jobs_found_today": search.jobs_found_today,
            "total_jobs_found": search.total_jobs_found,
            "week_ref": as_utc(search.week_ref) if search.week_ref else None,
            "created_at": as_utc(search.created_at),
            "last_updated": as_utc(search.last_updated),
            "last_progress_at": as_utc(search.last_progress_at),
            "reasoning_log": [serialize_log(entry) for entry in search.reasoning_logs],
        }


def delete_search(
    db: Session,
    search_id: int,
    clock: Callable[[], datetime] = utc_now,
) -> bool:
    """
    Delete a search, cancelling it first if it is still active.

    The search's weekly run entries are soft deleted, so jobs it already
    consumed keep counting against the week.

    Returns:
        False if the search does not exist
    """
    lifecycle = SearchLifecycle.load(db, search_id, clock)
    if lifecycle is None:
        return False

    if not lifecycle.is_terminal:
        lifecycle.cancel()

    search = lifecycle.search
    account_id = search.account_id
    weekly_quota_service.soft_delete_run(db, account_id, str(search.id), now=clock())

    db.query(AiSearchReasoningLog).filter(AiSearchReasoningLog.search_id == search_id).delete(
        synchronize_session=False
    )
    db.query(AiJobSearch).filter(AiJobSearch.id == search_id).delete(synchronize_session=False)
    db.commit()

    logger.info(f"AI job search deleted: search_id={search_id}, account_id={account_id}")
    return True
