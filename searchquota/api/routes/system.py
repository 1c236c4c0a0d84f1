from fastapi import APIRouter
from sqlalchemy import text
from searchquota.core.config import REDIS_URL
from searchquota.db.session import SessionLocal

router = APIRouter(prefix="/system", tags=["System"])

@router.get("/health")
def system_health():
    db_ok = True
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
    except Exception:
        db_ok = False

    return {
        "status": "ok" if db_ok else "degraded",
        "database": "connected" if db_ok else "error",
        "rate_limiter": "redis" if REDIS_URL else "memory",
        "api_version": "1.0.0",
        "service": "SearchQuota API"
    }
