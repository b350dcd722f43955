"""Subscription service - plan and status lookups used by metering"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokenguard.core.config import settings
from tokenguard.models.plan_limit import PlanLimit
from tokenguard.models.subscription import Subscription
from tokenguard.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_PLAN = "free"

DEFAULT_PLAN_LIMITS = {
    "free": {
        "max_tokens_per_month": 100000,
        "max_api_keys": 1,
        "max_team_members": 1,
        "price_usd": 0,
    },
    "pro": {
        "max_tokens_per_month": 1000000,
        "max_api_keys": 5,
        "max_team_members": 1,
        "price_usd": 19,
        "has_api_access": True,
        "has_advanced_analytics": True,
    },
    "team": {
        "max_tokens_per_month": 5000000,
        "max_api_keys": 20,
        "max_team_members": 5,
        "price_usd": 49,
        "has_api_access": True,
        "has_advanced_analytics": True,
        "has_audit_logs": True,
        "has_priority_support": True,
        "has_sso": True,
    },
}


def current_month_key(now: Optional[datetime] = None) -> str:
    """Calendar month key 'YYYY-MM' in UTC"""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def get_subscription(user_id: int, db: Session) -> Optional[Subscription]:
    """Get the user's subscription, creating the default free/active one if missing

    Returns None when the user itself does not exist.
    """
    subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if subscription:
        return subscription

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"Subscription lookup for unknown user {user_id}")
        return None

    logger.info(f"User {user_id} has no subscription, creating free subscription")
    subscription = Subscription(user_id=user_id, plan=DEFAULT_PLAN, status="active")
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.rollback()
        return db.query(Subscription).filter(Subscription.user_id == user_id).first()

    db.refresh(subscription)
    return subscription


def get_plan_limit(plan: Optional[str], db: Session) -> Optional[PlanLimit]:
    return db.query(PlanLimit).filter(PlanLimit.plan == (plan or DEFAULT_PLAN)).first()


def get_token_limit(plan: Optional[str], db: Session) -> int:
    """Monthly token limit for a plan; missing configuration counts as the free tier"""
    plan_limit = get_plan_limit(plan, db)
    if not plan_limit or not plan_limit.max_tokens_per_month:
        logger.warning(
            f"No plan limit configured for plan '{plan}', "
            f"falling back to {settings.DEFAULT_MONTHLY_TOKEN_LIMIT} tokens"
        )
        return settings.DEFAULT_MONTHLY_TOKEN_LIMIT
    return plan_limit.max_tokens_per_month


def seed_default_plan_limits(db: Session) -> int:
    """Insert the default plan limits that are not configured yet

    Returns:
        Number of plans inserted
    """
    existing = {row.plan for row in db.query(PlanLimit.plan).all()}
    inserted = 0
    for plan, values in DEFAULT_PLAN_LIMITS.items():
        if plan in existing:
            continue
        db.add(PlanLimit(plan=plan, **values))
        inserted += 1

    if inserted:
        db.commit()
        logger.info(f"Seeded {inserted} default plan limit(s)")
    return inserted
