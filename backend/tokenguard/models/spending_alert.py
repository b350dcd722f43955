"""SpendingAlert model"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime, timezone
from tokenguard.models.base import Base


class SpendingAlert(Base):
    """Marker that a usage threshold alert was sent.

    The unique constraint is what makes alerting at-most-once per
    (user, month, threshold): a second insert for the same key fails.
    """
    __tablename__ = "spending_alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month_year = Column(String(7), nullable=False)
    threshold = Column(Integer, nullable=False)  # 80 or 100
    alert_type = Column(String(50), nullable=False)  # 'usage_warning', 'usage_limit_reached'
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'month_year', 'threshold', name='uq_spending_alerts_user_month_threshold'),
    )
