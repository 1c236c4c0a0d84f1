from sqlalchemy import Column, Integer, String
from searchquota.db.base import Base

class Subscription(Base):
    """External account record: the subscription tier of an account (read-only here)."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, unique=True, nullable=False, index=True)

    tier = Column(String, default="free")  # free | casual | hunter
    status = Column(String, default="active")
