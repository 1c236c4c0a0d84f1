"""
Unit tests for the AI job search lifecycle.
Tests transition legality, daily and weekly clamping, completion and deletion.
"""
import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from searchquota.core.exceptions import IllegalTransitionError
from searchquota.db.base import Base
from searchquota.db.models.ai_job_search import AiJobSearch, AiSearchReasoningLog, SearchStatus
from searchquota.db.models.weekly_quota import WeeklyJobQuota, WeeklySearchRun
from searchquota.services import weekly_quota_service
from searchquota.services.quota_gate import AccountRef
from searchquota.services.search_lifecycle import SearchLifecycle, delete_search


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

UTC = timezone.utc
NOW = datetime(2026, 1, 14, 10, 0, tzinfo=UTC)  # Wednesday
CASUAL = AccountRef(id="acct-1", tier="casual")


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def search(db, clock):
    """A running casual search with the plan's daily limit of 10."""
    return SearchLifecycle.create(db, CASUAL, "Backend roles", clock=clock)


def consume_weekly(db, amount):
    """Use up part of the account's weekly quota from another search."""
    weekly_quota_service.admit(db, CASUAL.id, "other-search", amount, tier="casual", now=NOW)


def phases(lifecycle):
    return [entry["phase"] for entry in lifecycle.snapshot()["reasoning_log"]]


def test_create_starts_running(search):
    snapshot = search.snapshot()

    assert snapshot["status"] == "running"
    assert snapshot["daily_limit"] == 10
    assert snapshot["jobs_found_today"] == 0
    assert snapshot["total_jobs_found"] == 0
    assert phases(search) == ["initialization"]
    assert search.snapshot()["reasoning_log"][0]["details"]["weekly_limit"] == 50


def test_pause_then_resume_keeps_counters(search):
    """Test pause and resume return to running with counters untouched."""
    search.progress_report(4)

    assert search.pause() is True
    assert search.status == SearchStatus.PAUSED
    assert search.resume() is True
    assert search.status == SearchStatus.RUNNING

    snapshot = search.snapshot()
    assert snapshot["jobs_found_today"] == 4
    assert snapshot["total_jobs_found"] == 4
    assert phases(search) == ["initialization", "job_saving", "user_pause", "user_resume"]


def test_paused_search_refuses_progress(search):
    search.pause()

    outcome = search.progress_report(5)

    assert outcome.applied is False
    assert outcome.reason == "illegal_transition"
    assert search.snapshot()["total_jobs_found"] == 0


def test_pause_twice_is_refused(search):
    assert search.pause() is True
    assert search.pause() is False
    assert phases(search) == ["initialization", "user_pause"]


def test_cancelled_search_accepts_no_transition(search, db):
    """Test no event succeeds from cancelled and nothing further is admitted."""
    assert search.cancel() is True

    assert search.pause() is False
    assert search.resume() is False
    assert search.cancel() is False
    assert search.fatal_error("boom") is False

    outcome = search.progress_report(5)
    assert outcome.applied is False
    assert outcome.reason == "illegal_transition"
    assert outcome.kept == 0

    assert search.status == SearchStatus.CANCELLED
    stats = weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW)
    assert stats.consumed == 0


def test_apply_raises_on_illegal_event(search):
    search.cancel()

    with pytest.raises(IllegalTransitionError) as exc_info:
        search.apply("resume")

    assert exc_info.value.current == "cancelled"
    assert str(exc_info.value) == "Cannot resume a search that is cancelled"


def test_apply_unknown_event(search):
    with pytest.raises(ValueError):
        search.apply("restart")


def test_paused_search_can_be_cancelled(search):
    search.pause()
    assert search.cancel() is True
    assert search.is_terminal is True


def test_progress_within_limits(search, db):
    """Test a batch under both limits is kept whole and recorded as a weekly run."""
    outcome = search.progress_report(6)

    assert outcome.applied is True
    assert outcome.kept == 6
    assert outcome.dropped == 0
    assert outcome.truncated_by == []
    assert outcome.status == "running"

    stats = weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW)
    assert stats.consumed == 6
    assert stats.runs[0]["run_id"] == str(search.search.id)
    assert stats.runs[0]["label"] == "Backend roles"
    assert search.snapshot()["week_ref"] == datetime(2026, 1, 12, tzinfo=UTC)


def test_daily_limit_truncates_batch(search):
    """Test the daily clamp is applied before weekly admission."""
    search.progress_report(8)

    outcome = search.progress_report(5)

    assert outcome.requested == 2
    assert outcome.kept == 2
    assert outcome.dropped == 3
    assert outcome.truncated_by == ["daily"]
    assert outcome.daily_limit_reached is True
    assert outcome.weekly_limit_reached is False
    assert outcome.status == "running"


def test_weekly_limit_truncates_batch(search, db):
    """Test weekly admission cuts a batch that fits the daily limit."""
    consume_weekly(db, 45)

    outcome = search.progress_report(8)

    assert outcome.requested == 8
    assert outcome.kept == 5
    assert outcome.truncated_by == ["weekly"]
    assert outcome.weekly_limit_reached is True
    assert outcome.daily_limit_reached is False
    assert outcome.status == "running"
    assert search.snapshot()["reasoning_log"][-1]["details"]["truncated_by"] == ["weekly"]


def test_both_limits_truncate_batch(db, clock):
    consume_weekly(db, 47)
    search = SearchLifecycle.create(db, CASUAL, "Data roles", daily_limit=5, clock=clock)

    outcome = search.progress_report(8)

    assert outcome.requested == 5
    assert outcome.kept == 3
    assert outcome.truncated_by == ["daily", "weekly"]


def test_completes_when_daily_and_weekly_reached(db, clock):
    """Test the search completes once both limits are reached."""
    consume_weekly(db, 45)
    search = SearchLifecycle.create(db, CASUAL, "Data roles", daily_limit=5, clock=clock)

    outcome = search.progress_report(8)

    assert outcome.kept == 5
    assert outcome.daily_limit_reached is True
    assert outcome.weekly_limit_reached is True
    assert outcome.status == "completed"
    assert search.status == SearchStatus.COMPLETED
    assert phases(search)[-1] == "completion"
    assert search.progress_report(1).applied is False


def test_zero_found_writes_one_log_entry(search, db):
    outcome = search.progress_report(0)

    assert outcome.applied is True
    assert outcome.kept == 0
    assert phases(search) == ["initialization", "job_saving"]
    assert db.query(WeeklyJobQuota).count() == 0


def test_daily_counter_resets_on_new_day(search, clock):
    """Test jobs_found_today starts over on the next UTC day."""
    first = search.progress_report(12)
    assert first.kept == 10

    clock.now = NOW + timedelta(days=1)
    second = search.progress_report(4)

    assert second.kept == 4
    assert second.truncated_by == []
    snapshot = search.snapshot()
    assert snapshot["jobs_found_today"] == 4
    assert snapshot["total_jobs_found"] == 14


def test_daily_counter_resets_after_pause_and_resume_past_midnight(search, clock):
    """Test a pause and resume on the next day does not postpone the daily reset."""
    assert search.progress_report(12).kept == 10

    clock.now = NOW + timedelta(days=1, hours=1)
    assert search.pause() is True
    assert search.resume() is True

    outcome = search.progress_report(4)

    assert outcome.kept == 4
    assert outcome.truncated_by == []
    assert search.snapshot()["jobs_found_today"] == 4
    assert search.snapshot()["last_progress_at"] == clock.now


def test_pause_and_resume_same_day_keeps_daily_count(search, clock):
    search.progress_report(10)

    clock.now = NOW + timedelta(hours=3)
    search.pause()
    search.resume()
    outcome = search.progress_report(3)

    assert outcome.kept == 0
    assert outcome.truncated_by == ["daily"]
    assert search.snapshot()["jobs_found_today"] == 10


def test_failure_after_admission_rolls_back_weekly_quota(search, db, monkeypatch):
    """Test a report that fails after admission leaves no weekly quota consumed."""
    def failing_log(*args, **kwargs):
        raise RuntimeError("reasoning log unavailable")

    monkeypatch.setattr(search, "_append_log", failing_log)

    with pytest.raises(RuntimeError):
        search.progress_report(6)

    stats = weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW)
    assert stats.consumed == 0
    assert stats.runs == []
    assert db.query(WeeklySearchRun).count() == 0
    assert search.snapshot()["total_jobs_found"] == 0


def test_search_leaving_running_during_admission_releases_quota(search, db, monkeypatch):
    """Test a status change between admission and the counter update gives the admission back."""
    search_id = search.search.id
    real_admit = weekly_quota_service.admit

    def admit_then_pause(session, *args, **kwargs):
        admission = real_admit(session, *args, **kwargs)
        session.execute(
            update(AiJobSearch)
            .where(AiJobSearch.id == search_id)
            .values(status=SearchStatus.PAUSED.value)
            .execution_options(synchronize_session=False)
        )
        return admission

    monkeypatch.setattr(weekly_quota_service, "admit", admit_then_pause)

    outcome = search.progress_report(6)

    assert outcome.applied is False
    assert outcome.kept == 0
    assert outcome.reason == "illegal_transition"
    stats = weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW)
    assert stats.consumed == 0
    assert db.query(WeeklySearchRun).count() == 0
    assert phases(search) == ["initialization"]


def test_search_cancelled_in_another_session_admits_nothing(search, db):
    """Test a cancel committed elsewhere stops the next report from consuming quota."""
    other = TestSessionLocal()
    try:
        assert SearchLifecycle.load(other, search.search.id, clock=lambda: NOW).cancel() is True
    finally:
        other.close()

    outcome = search.progress_report(5)

    assert outcome.applied is False
    assert outcome.status == "cancelled"
    assert weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW).consumed == 0


def test_fatal_error_fails_search(search):
    assert search.fatal_error(RuntimeError("job board timeout")) is True

    snapshot = search.snapshot()
    assert snapshot["status"] == "failed"
    last = snapshot["reasoning_log"][-1]
    assert last["phase"] == "error"
    assert last["success"] is False
    assert last["details"]["error"] == "job board timeout"


def test_load_missing_search(db):
    assert SearchLifecycle.load(db, 999) is None


def test_delete_search_keeps_weekly_consumption(search, db, clock):
    """Test deleting a search soft deletes its runs without freeing quota."""
    search.progress_report(8)
    search_id = search.search.id

    assert delete_search(db, search_id, clock=clock) is True

    assert db.query(AiJobSearch).filter(AiJobSearch.id == search_id).first() is None
    assert db.query(AiSearchReasoningLog).filter(AiSearchReasoningLog.search_id == search_id).count() == 0

    stats = weekly_quota_service.current_stats(db, CASUAL.id, 50, now=NOW)
    assert stats.consumed == 8
    assert stats.runs[0]["deleted"] is True
    assert stats.runs[0]["kept"] == 8


def test_delete_missing_search(db):
    assert delete_search(db, 12345) is False
