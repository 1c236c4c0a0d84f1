import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ✅ Import All API Routes
from searchquota.api.routes import ai_searches, system, usage

# ✅ Import Core Setup
from searchquota.core.config import FRONTEND_URL, LOG_DIR, LOG_LEVEL, RUN_MIGRATIONS
from searchquota.core.logging_config import setup_logging
from searchquota.db.init_db import init_db
from searchquota.db.migrate import run_migrations


# ============================================
# ✅ LOGGING
# ============================================

setup_logging(log_level=LOG_LEVEL, log_dir=LOG_DIR)
logger = logging.getLogger(__name__)


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="SearchQuota API")

# ✅ CORS: ONLY ALLOW THE FRONTEND
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        FRONTEND_URL,
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(usage.router)
app.include_router(ai_searches.router)
app.include_router(system.router)


# ============================================
# ✅ DATABASE SCHEMA ON STARTUP
# ============================================

@app.on_event("startup")
def on_startup():
    if RUN_MIGRATIONS:
        run_migrations()
    else:
        init_db()
    logger.info("SearchQuota API started")


# ============================================
# ✅ HEALTH CHECK ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "SearchQuota API running"}
