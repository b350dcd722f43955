"""UsageLog model"""
from sqlalchemy import Column, Integer, String, Float, ForeignKey, Index, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tokenguard.models.base import Base


class UsageLog(Base):
    """Append-only record of one metered call"""
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    api_key_id = Column(String(36), ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True)
    tokens_used = Column(Integer, nullable=False)
    cost_usd = Column(Float, nullable=False)
    model = Column(String(100), nullable=True)
    endpoint = Column(String(2000), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    user = relationship("User", back_populates="usage_logs")

    __table_args__ = (
        Index('ix_usage_logs_user_created', 'user_id', 'created_at'),
    )
