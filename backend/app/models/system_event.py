from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class SystemEvent(Base):
    """
    Operational log for background work: skipped polling ticks, per-device
    polling failures, fast-poll exhaustion.

    level:   info | warning | error
    source:  polling | fast_poll
    """
    __tablename__ = "system_events"

    id            = Column(Integer, primary_key=True, index=True)
    timestamp     = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    level         = Column(String(20), nullable=False, index=True)
    source        = Column(String(50), nullable=False, index=True)
    event_type    = Column(String(100), nullable=False)               # tick_skipped, device_poll_failed …
    account_id    = Column(Integer, nullable=True, index=True)
    resource_id   = Column(String(200), nullable=True)                # device id
    message       = Column(String(500), nullable=False)
    details       = Column(Text, nullable=True)
