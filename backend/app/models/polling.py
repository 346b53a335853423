from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class PollingConfig(Base):
    __tablename__ = "polling_configs"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, unique=True, nullable=False, index=True)
    polling_interval_seconds = Column(Integer, default=300, nullable=False)
    fast_polling_interval_seconds = Column(Integer, default=30, nullable=False)
    fast_polling_retries = Column(Integer, default=3, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ApiToken(Base):
    """Upstream inventory API credential for an account."""
    __tablename__ = "api_tokens"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    token_type = Column(String(50), default="Bearer")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
