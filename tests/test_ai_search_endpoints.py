"""
Integration tests for the AI job search endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from searchquota.main import app
from searchquota.core import rate_limit
from searchquota.core.rate_limit import InMemoryRateLimiter
from searchquota.db.base import Base
from searchquota.db.models.subscription import Subscription
from searchquota.db.models.weekly_quota import WeeklySearchRun
from searchquota.db.session import get_db
from searchquota.services import quota_gate, usage_ledger_service


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function", autouse=True)
def setup_db(monkeypatch):
    """Create and drop tables for each test; start with an empty rate limiter."""
    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(rate_limit, "_rate_limiter", InMemoryRateLimiter(rng=lambda: 1.0))
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


def subscribe(db_session, account_id, tier):
    db_session.add(Subscription(account_id=account_id, tier=tier, status="active"))
    db_session.commit()


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def search_id(client, db_session):
    """A running search owned by a casual account."""
    subscribe(db_session, "acct-1", "casual")
    response = client.post("/accounts/acct-1/ai-searches", json={"name": "Backend roles"})
    assert response.status_code == 201
    return response.json()["id"]


def test_create_search_free_plan_forbidden(client):
    """Test the free plan cannot start AI searches."""
    response = client.post("/accounts/acct-1/ai-searches", json={"name": "Backend roles"})

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["error"] == "quota_exceeded"
    assert detail["kind"] == "ai_job_searches"
    assert detail["reason"] == "not_included_in_plan"
    assert detail["recommended_plan"] == "casual"
    assert detail["upgrade_url"].endswith("/pricing")


def test_create_search_tracks_usage_after_success(client, db_session):
    """Test a created search consumes the monthly quota and the next one is denied."""
    subscribe(db_session, "acct-1", "casual")

    response = client.post("/accounts/acct-1/ai-searches", json={"name": "Backend roles"})

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "running"
    assert data["daily_limit"] == 10
    assert data["reasoning_log"][0]["phase"] == "initialization"

    usage = client.get("/accounts/acct-1/usage").json()
    assert usage["features"]["ai_job_searches"]["used"] == 1

    second = client.post("/accounts/acct-1/ai-searches", json={"name": "Data roles"})
    assert second.status_code == 403
    assert second.json()["detail"]["reason"] == "limit_exceeded"


def test_create_search_succeeds_when_tracking_fails(client, db_session, monkeypatch):
    """Test a tracking failure after creation still answers 201."""
    subscribe(db_session, "acct-1", "casual")

    def failing_commit(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(quota_gate.usage_ledger_service, "commit", failing_commit)

    response = client.post("/accounts/acct-1/ai-searches", json={"name": "Backend roles"})

    assert response.status_code == 201
    assert response.json()["status"] == "running"
    assert usage_ledger_service.get_current_count(db_session, "acct-1", "ai_job_searches") == 0


def test_create_search_rate_limited(client, db_session):
    """Test the hourly cap on search creation answers 429."""
    subscribe(db_session, "acct-1", "hunter")

    statuses = [
        client.post("/accounts/acct-1/ai-searches", json={"name": f"Search {i}"}).status_code
        for i in range(6)
    ]

    assert statuses == [201] * 5 + [429]


def test_create_search_validates_payload(client, db_session):
    subscribe(db_session, "acct-1", "casual")
    response = client.post("/accounts/acct-1/ai-searches", json={"name": "", "daily_limit": -1})
    assert response.status_code == 422


def test_get_search(client, search_id):
    response = client.get(f"/ai-searches/{search_id}")

    assert response.status_code == 200
    assert response.json()["name"] == "Backend roles"


def test_get_missing_search(client):
    response = client.get("/ai-searches/999")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "search_not_found"


def test_pause_resume_cancel(client, search_id):
    """Test lifecycle transitions and 409 for refused ones."""
    assert client.post(f"/ai-searches/{search_id}/pause").json()["status"] == "paused"

    again = client.post(f"/ai-searches/{search_id}/pause")
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "illegal_transition"
    assert again.json()["detail"]["status"] == "paused"

    assert client.post(f"/ai-searches/{search_id}/resume").json()["status"] == "running"
    assert client.post(f"/ai-searches/{search_id}/cancel").json()["status"] == "cancelled"
    assert client.post(f"/ai-searches/{search_id}/resume").status_code == 409


def test_progress_report(client, search_id):
    """Test a progress report is clamped by the daily limit."""
    first = client.post(f"/ai-searches/{search_id}/progress", json={"found": 8})
    assert first.status_code == 200
    assert first.json()["kept"] == 8

    second = client.post(f"/ai-searches/{search_id}/progress", json={"found": 6})
    data = second.json()
    assert data["requested"] == 2
    assert data["kept"] == 2
    assert data["dropped"] == 4
    assert data["truncated_by"] == ["daily"]
    assert data["search"]["jobs_found_today"] == 10

    weekly = client.get("/accounts/acct-1/weekly-quota").json()
    assert weekly["current"]["consumed"] == 10


def test_progress_report_on_cancelled_search(client, search_id):
    client.post(f"/ai-searches/{search_id}/cancel")

    response = client.post(f"/ai-searches/{search_id}/progress", json={"found": 3})

    assert response.status_code == 409
    assert response.json()["detail"]["status"] == "cancelled"


def test_fail_search(client, search_id):
    response = client.post(f"/ai-searches/{search_id}/fail", json={"error": "job board timeout"})

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert response.json()["reasoning_log"][-1]["phase"] == "error"
    assert client.post(f"/ai-searches/{search_id}/fail", json={"error": "again"}).status_code == 409


def test_delete_search(client, search_id, db_session):
    """Test deleting a search keeps its weekly consumption and flags its runs."""
    client.post(f"/ai-searches/{search_id}/progress", json={"found": 7})

    response = client.delete(f"/ai-searches/{search_id}")

    assert response.status_code == 204
    assert client.get(f"/ai-searches/{search_id}").status_code == 404
    assert client.delete(f"/ai-searches/{search_id}").status_code == 404

    weekly = client.get("/accounts/acct-1/weekly-quota").json()
    assert weekly["current"]["consumed"] == 7
    assert weekly["current"]["runs"][0]["deleted"] is True
    assert db_session.query(WeeklySearchRun).filter(WeeklySearchRun.deleted.is_(True)).count() == 1
