"""Quota ledger - admission control and usage commits per (user, month)

``check`` answers whether a call may proceed without touching durable
counters. ``commit`` re-checks with the actual amount, then appends a usage
log and applies one atomic additive upsert to ``monthly_usage``.

Admission is optimistic: two concurrent checks can both pass for amounts that
together overshoot the limit. The upsert guarantees no lost updates, not a
hard cap.
"""
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from tokenguard.core.config import WARNING_THRESHOLD, LIMIT_THRESHOLD, ALERT_THRESHOLDS
from tokenguard.core.metrics import tokens_committed_counter, quota_rejections_counter
from tokenguard.models.api_key import ApiKey
from tokenguard.models.monthly_usage import MonthlyUsage
from tokenguard.models.usage_log import UsageLog
from tokenguard.services.subscription_service import (
    DEFAULT_PLAN, current_month_key, get_subscription, get_token_limit
)

logger = logging.getLogger(__name__)
usage_logger = logging.getLogger("usage")

REASON_INACTIVE = "Subscription is not active"
REASON_LIMIT = "Monthly token limit exceeded"

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class UsageAlert:
    """A threshold crossing to be delivered by the notifier"""
    user_id: int
    current_tokens: int
    max_tokens: int
    threshold: int

    def to_payload(self) -> dict:
        return asdict(self)


AlertDispatcher = Callable[[UsageAlert], None]


@dataclass
class UsageCheckResult:
    allowed: bool
    current_usage: int
    limit: int
    percent_used: int
    should_warn: bool = False
    reason: Optional[str] = None


@dataclass
class CommitResult:
    success: bool
    blocked: bool = False
    reason: Optional[str] = None
    percent_used: int = 0
    should_warn: bool = False
    total_tokens: int = 0
    limit: int = 0


def percent_of(tokens: int, limit: int) -> int:
    """Whole percent of ``limit``, halves rounded up"""
    if limit <= 0:
        return 100
    return int(math.floor(tokens / limit * 100 + 0.5))


def should_warn_at(percent: int) -> bool:
    return WARNING_THRESHOLD <= percent < LIMIT_THRESHOLD


def crossed_thresholds(previous_tokens: int, new_tokens: int, limit: int):
    """Thresholds t with previous < t% of limit <= new, on exact token counts"""
    return [
        t for t in ALERT_THRESHOLDS
        if previous_tokens * 100 < t * limit <= new_tokens * 100
    ]


class QuotaLedger:
    """Monthly token ledger for one request's database session"""

    def __init__(self, db: Session, alert_dispatcher: Optional[AlertDispatcher] = None):
        self.db = db
        self.alert_dispatcher = alert_dispatcher

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_tokens(self, user_id: int, month_year: Optional[str] = None) -> int:
        """Tokens recorded for the month, 0 when no row exists yet"""
        total = (
            self.db.query(MonthlyUsage.total_tokens)
            .filter(
                MonthlyUsage.user_id == user_id,
                MonthlyUsage.month_year == (month_year or current_month_key())
            )
            .scalar()
        )
        return total or 0

    def token_limit(self, user_id: int) -> int:
        subscription = get_subscription(user_id, self.db)
        plan = subscription.plan if subscription else DEFAULT_PLAN
        return get_token_limit(plan, self.db)

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------

    def check(self, user_id: int, tokens_to_reserve: int = 0) -> UsageCheckResult:
        """Is a call of ``tokens_to_reserve`` tokens allowed right now?

        Dispatches an early 80% warning when the projected usage crosses the
        threshold that current usage has not reached yet.
        """
        return self._evaluate(user_id, tokens_to_reserve, stage="check")

    def _evaluate(self, user_id: int, tokens: int, stage: str) -> UsageCheckResult:
        if tokens < 0:
            raise ValueError("tokens must be non-negative")

        subscription = get_subscription(user_id, self.db)
        plan = subscription.plan if subscription else DEFAULT_PLAN
        limit = get_token_limit(plan, self.db)
        current = self.current_tokens(user_id)
        projected = current + tokens
        percent_used = percent_of(current, limit)

        if not subscription or subscription.status != "active":
            usage_logger.info(
                f"Usage check refused for user {user_id}: subscription "
                f"{subscription.status if subscription else 'missing'}"
            )
            quota_rejections_counter.labels(reason="inactive", stage=stage).inc()
            return UsageCheckResult(
                allowed=False,
                reason=REASON_INACTIVE,
                current_usage=current,
                limit=limit,
                percent_used=percent_used,
            )

        if projected > limit:
            usage_logger.info(f"Usage would exceed limit for user {user_id}: {projected} > {limit}")
            quota_rejections_counter.labels(reason="limit", stage=stage).inc()
            return UsageCheckResult(
                allowed=False,
                reason=REASON_LIMIT,
                current_usage=current,
                limit=limit,
                percent_used=percent_used,
            )

        # Commits report crossings from actual totals instead
        if stage == "check" and WARNING_THRESHOLD in crossed_thresholds(current, projected, limit):
            usage_logger.info(f"User {user_id} projected to cross {WARNING_THRESHOLD}%, dispatching warning")
            self._dispatch(UsageAlert(user_id, projected, limit, WARNING_THRESHOLD))

        logger.debug(f"Usage check passed for user {user_id}: {current}/{limit} ({percent_used}%)")
        return UsageCheckResult(
            allowed=True,
            current_usage=current,
            limit=limit,
            percent_used=percent_used,
            should_warn=should_warn_at(percent_used),
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(
        self,
        user_id: int,
        tokens_used: int,
        cost_usd: float,
        model: Optional[str] = None,
        endpoint: Optional[str] = None,
        api_key_id: Optional[str] = None
    ) -> CommitResult:
        """Record a metered call.

        Refused without writing anything when the actual amount no longer
        fits. Otherwise the usage log, the monthly aggregate and the key's
        last_used_at change in one transaction.
        """
        if tokens_used < 0 or cost_usd < 0:
            raise ValueError("tokens_used and cost_usd must be non-negative")

        verdict = self._evaluate(user_id, tokens_used, stage="commit")
        if not verdict.allowed:
            return CommitResult(
                success=False,
                blocked=True,
                reason=verdict.reason,
                percent_used=verdict.percent_used,
                total_tokens=verdict.current_usage,
                limit=verdict.limit,
            )

        month_year = current_month_key()
        now = datetime.now(timezone.utc)

        try:
            owned_key_id = self._owned_key_id(user_id, api_key_id)
            self.db.add(UsageLog(
                user_id=user_id,
                api_key_id=owned_key_id,
                tokens_used=tokens_used,
                cost_usd=cost_usd,
                model=model,
                endpoint=endpoint,
                created_at=now,
            ))
            self.db.flush()

            self._apply_usage(user_id, month_year, tokens_used, cost_usd, now)

            if owned_key_id:
                self.db.query(ApiKey).filter(ApiKey.id == owned_key_id).update(
                    {ApiKey.last_used_at: now}, synchronize_session=False
                )

            # Read back inside the transaction: the row is ours until commit
            new_total = self.current_tokens(user_id, month_year)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Failed to commit usage for user {user_id}", exc_info=True)
            raise

        tokens_committed_counter.inc(tokens_used)

        previous_total = new_total - tokens_used
        new_percent = percent_of(new_total, verdict.limit)

        for threshold in crossed_thresholds(previous_total, new_total, verdict.limit):
            usage_logger.info(f"User {user_id} reached {threshold}% usage, dispatching alert")
            self._dispatch(UsageAlert(user_id, new_total, verdict.limit, threshold))

        usage_logger.info(
            f"Usage recorded for user {user_id}: {tokens_used} tokens, ${cost_usd:.6f} "
            f"({previous_total} -> {new_total} of {verdict.limit})"
        )
        return CommitResult(
            success=True,
            percent_used=new_percent,
            should_warn=should_warn_at(new_percent),
            total_tokens=new_total,
            limit=verdict.limit,
        )

    def _owned_key_id(self, user_id: int, api_key_id: Optional[str]) -> Optional[str]:
        if not api_key_id:
            return None
        key_id = (
            self.db.query(ApiKey.id)
            .filter(ApiKey.id == str(api_key_id), ApiKey.user_id == user_id)
            .scalar()
        )
        if not key_id:
            logger.warning(f"Usage for user {user_id} referenced unknown API key {api_key_id}; not linked")
        return key_id

    def _apply_usage(self, user_id: int, month_year: str, tokens: int, cost: float, now: datetime) -> None:
        """Additive upsert of the monthly aggregate in a single statement"""
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Atomic usage upsert is not supported on '{dialect}'")

        stmt = insert(MonthlyUsage).values(
            user_id=user_id,
            month_year=month_year,
            total_tokens=tokens,
            total_cost_usd=cost,
            request_count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "month_year"],
            set_={
                "total_tokens": MonthlyUsage.total_tokens + stmt.excluded.total_tokens,
                "total_cost_usd": MonthlyUsage.total_cost_usd + stmt.excluded.total_cost_usd,
                "request_count": MonthlyUsage.request_count + 1,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.db.execute(stmt)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _dispatch(self, alert: UsageAlert) -> None:
        """Hand an alert to the dispatcher; failures never reach the caller"""
        if self.alert_dispatcher is None:
            logger.debug(f"No alert dispatcher configured, dropping {alert}")
            return
        try:
            self.alert_dispatcher(alert)
        except Exception as e:
            logger.error(
                f"Failed to dispatch {alert.threshold}% alert for user {alert.user_id}: {e}",
                exc_info=True
            )
