"""AdminNotification model"""
from sqlalchemy import Column, Integer, String, Text, Boolean, JSON, DateTime
from datetime import datetime, timezone
from tokenguard.models.base import Base


class AdminNotification(Base):
    """Feed entry shown in the admin panel"""
    __tablename__ = "admin_notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
