"""Usage reads for the dashboard and usage history"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List

from tokenguard.models.monthly_usage import MonthlyUsage
from tokenguard.models.usage_log import UsageLog
from tokenguard.services.quota_service import percent_of, should_warn_at
from tokenguard.services.subscription_service import (
    DEFAULT_PLAN, current_month_key, get_subscription, get_token_limit
)


MAX_LOG_PAGE = 500


def get_usage_summary(user_id: int, db: Session, month_year: Optional[str] = None) -> Dict[str, Any]:
    """Current month's totals against the plan limit"""
    month_year = month_year or current_month_key()
    subscription = get_subscription(user_id, db)
    plan = subscription.plan if subscription else DEFAULT_PLAN
    limit = get_token_limit(plan, db)

    usage = db.query(MonthlyUsage).filter(
        MonthlyUsage.user_id == user_id,
        MonthlyUsage.month_year == month_year
    ).first()
    total_tokens = usage.total_tokens if usage else 0
    percent = percent_of(total_tokens, limit)

    return {
        "monthYear": month_year,
        "totalTokens": total_tokens,
        "totalCostUsd": float(usage.total_cost_usd) if usage else 0.0,
        "requestCount": usage.request_count if usage else 0,
        "limit": limit,
        "percentUsed": percent,
        "shouldWarn": should_warn_at(percent),
        "plan": plan,
        "status": subscription.status if subscription else None,
    }


def get_usage_logs(user_id: int, limit: int, db: Session) -> List[Dict[str, Any]]:
    """Most recent usage log entries, newest first"""
    limit = max(1, min(limit, MAX_LOG_PAGE))
    logs = db.query(UsageLog).filter(
        UsageLog.user_id == user_id
    ).order_by(UsageLog.created_at.desc(), UsageLog.id.desc()).limit(limit).all()

    return [
        {
            "id": log.id,
            "tokensUsed": log.tokens_used,
            "costUsd": float(log.cost_usd),
            "model": log.model,
            "endpoint": log.endpoint,
            "apiKeyId": log.api_key_id,
            "createdAt": log.created_at.isoformat() if log.created_at else None,
        }
        for log in logs
    ]
