import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./searchquota.db")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# ✅ Frontend (upgrade links in quota denials)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# ✅ Rate limiting
RATE_LIMIT_MAX_PER_HOUR = int(os.getenv("RATE_LIMIT_MAX_PER_HOUR", "10"))
RATE_LIMIT_CLEANUP_PROBABILITY = float(os.getenv("RATE_LIMIT_CLEANUP_PROBABILITY", "0.01"))
RATE_LIMIT_RETENTION_HOURS = int(os.getenv("RATE_LIMIT_RETENTION_HOURS", "24"))
REDIS_URL = os.getenv("REDIS_URL")

# ✅ Quota engine
ADMIT_MAX_RETRIES = int(os.getenv("ADMIT_MAX_RETRIES", "3"))
USAGE_HISTORY_MONTHS = int(os.getenv("USAGE_HISTORY_MONTHS", "12"))

# ✅ Startup
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"
