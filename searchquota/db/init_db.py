from searchquota.db.session import engine
from searchquota.db.base import Base
import searchquota.db.models  # noqa: F401  (registers every table on Base.metadata)


def init_db():
    """Create all tables directly, for local development without Alembic."""
    Base.metadata.create_all(bind=engine)
