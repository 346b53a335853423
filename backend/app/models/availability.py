"""Device state-change log and flapping incidents."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Index
from sqlalchemy.sql import func
from app.database import Base


class StateChangeEvent(Base):
    """Append-only up/down transitions per (account, device).

    Rows are never updated; insertion order is temporal order per device.
    """
    __tablename__ = "state_change_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False)
    device_id = Column(String(100), nullable=False)
    status = Column(String(10), nullable=False)              # up, down
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    detection_method = Column(String(20), nullable=False)    # polling, trap, fast_polling
    reason = Column(Text, nullable=True)
    retry_attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_state_change_events_acct_dev_ts", "account_id", "device_id", "occurred_at"),
    )


class FlappingIncident(Base):
    __tablename__ = "flapping_incidents"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True)
    device_id = Column(String(100), nullable=False, index=True)
    transition_count = Column(Integer, nullable=False)
    window_seconds = Column(Integer, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    severity = Column(String(10), nullable=False)            # low, medium, high
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
