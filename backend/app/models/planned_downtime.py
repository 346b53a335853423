from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class PlannedDowntimeWindow(Base):
    """Maintenance window excluded from SLA accounting.

    For recurring windows only the time-of-day (plus weekday for weekly,
    day-of-month for monthly) of start_time/end_time is meaningful.
    """
    __tablename__ = "planned_downtime"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True)
    device_id = Column(String(100), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    recurring = Column(String(10), default="none", nullable=False)  # none, daily, weekly, monthly
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
