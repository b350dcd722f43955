"""PlanLimit model"""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, CheckConstraint
from datetime import datetime, timezone
from tokenguard.models.base import Base


class PlanLimit(Base):
    """Static per-plan configuration, owned by billing/admin"""
    __tablename__ = "plan_limits"

    id = Column(Integer, primary_key=True, index=True)
    plan = Column(String(20), unique=True, nullable=False, index=True)
    max_tokens_per_month = Column(Integer, nullable=False)
    max_api_keys = Column(Integer, nullable=False, default=1)
    max_team_members = Column(Integer, nullable=False, default=1)
    price_usd = Column(Numeric(10, 2), nullable=False, default=0)

    # Feature flags
    has_api_access = Column(Boolean, default=False, nullable=False)
    has_advanced_analytics = Column(Boolean, default=False, nullable=False)
    has_audit_logs = Column(Boolean, default=False, nullable=False)
    has_priority_support = Column(Boolean, default=False, nullable=False)
    has_sso = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        CheckConstraint('max_tokens_per_month > 0', name='ck_plan_limits_tokens_positive'),
    )
