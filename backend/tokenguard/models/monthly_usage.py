"""MonthlyUsage model"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tokenguard.models.base import Base


class MonthlyUsage(Base):
    """Aggregate usage per (user, calendar month).

    Only ever mutated through QuotaLedger's additive upsert; rows for past months
    are never touched again.
    """
    __tablename__ = "monthly_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month_year = Column(String(7), nullable=False)  # 'YYYY-MM' (UTC)
    total_tokens = Column(Integer, default=0, nullable=False)
    total_cost_usd = Column(Float, default=0.0, nullable=False)
    request_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="monthly_usage")

    __table_args__ = (
        UniqueConstraint('user_id', 'month_year', name='uq_monthly_usage_user_month'),
    )

    def __repr__(self):
        return f"<MonthlyUsage(user_id={self.user_id}, month={self.month_year}, tokens={self.total_tokens})>"
