"""Usage threshold notifications

An alert is sent at most once per (user, month, threshold). The
``spending_alerts`` unique constraint is the only thing that decides this, so
concurrent or repeated triggers for the same key collapse to one delivery.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokenguard.core.config import settings, ALERT_THRESHOLDS, LIMIT_THRESHOLD
from tokenguard.core.errors import NotFoundError
from tokenguard.core.metrics import alerts_counter
from tokenguard.db.task_queue import enqueue_task, USAGE_ALERT_TASK
from tokenguard.models.admin_notification import AdminNotification
from tokenguard.models.spending_alert import SpendingAlert
from tokenguard.models.system_setting import SystemSetting
from tokenguard.models.user import User
from tokenguard.services.email_service import send_usage_alert_email
from tokenguard.services.quota_service import UsageAlert, percent_of
from tokenguard.services.subscription_service import current_month_key

alerts_logger = logging.getLogger("alerts")

SUPPORT_EMAIL_SETTING = "support_email"


def alert_type_for(threshold: int) -> str:
    return "usage_limit_reached" if threshold >= LIMIT_THRESHOLD else "usage_warning"


def get_support_email(db: Session) -> str:
    """Support address from system settings, falling back to configuration"""
    value = (
        db.query(SystemSetting.value)
        .filter(SystemSetting.key == SUPPORT_EMAIL_SETTING)
        .scalar()
    )
    return value or settings.SUPPORT_EMAIL


def enqueue_usage_alert(alert: UsageAlert) -> str:
    """Alert dispatcher used on the request path: one LPUSH, no delivery"""
    task_id = enqueue_task(USAGE_ALERT_TASK, alert.to_payload())
    alerts_counter.labels(threshold=str(alert.threshold), result="enqueued").inc()
    alerts_logger.info(
        f"Queued {alert.threshold}% alert for user {alert.user_id} (task {task_id})"
    )
    return task_id


class UsageAlertNotifier:
    """Claims the spending-alert marker, then delivers the alert"""

    def __init__(self, db: Session, sender: Optional[Callable[..., bool]] = None):
        self.db = db
        self.sender = sender or send_usage_alert_email

    def notify(
        self,
        user_id: int,
        current_tokens: int,
        max_tokens: int,
        threshold: int,
        month_year: Optional[str] = None
    ) -> bool:
        """Send the alert unless it was already sent this month.

        Returns:
            True if this call claimed the marker and delivered, False if an
            alert for the same (user, month, threshold) already exists

        Raises:
            ValueError: Unknown threshold
            NotFoundError: User does not exist or has no email address
        """
        if threshold not in ALERT_THRESHOLDS:
            raise ValueError(f"Unsupported alert threshold: {threshold}")

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.email:
            alerts_logger.warning(f"Usage alert for user {user_id} skipped: user profile not found")
            raise NotFoundError("User profile not found")

        month_year = month_year or current_month_key()
        alert_type = alert_type_for(threshold)

        self.db.add(SpendingAlert(
            user_id=user_id,
            month_year=month_year,
            threshold=threshold,
            alert_type=alert_type,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            alerts_counter.labels(threshold=str(threshold), result="duplicate").inc()
            alerts_logger.info(
                f"{threshold}% alert for user {user_id} already sent for {month_year}, skipping"
            )
            return False

        alerts_logger.info(
            f"Processing {threshold}% usage alert for user {user_id}: "
            f"{current_tokens}/{max_tokens} tokens"
        )

        support_email = get_support_email(self.db)
        delivered = self.sender(
            user.email, user.full_name, current_tokens, max_tokens, threshold, support_email
        )
        if not delivered:
            # Marker is kept; the alert counts as sent for this month
            alerts_logger.warning(f"{threshold}% alert email to user {user_id} was not delivered")

        percent = percent_of(current_tokens, max_tokens)
        reached = threshold >= LIMIT_THRESHOLD
        self.db.add(AdminNotification(
            type=alert_type,
            title="User Hit Usage Limit" if reached else "User Approaching Usage Limit",
            message=f"{user.email} has reached {percent}% of their monthly token limit",
            data={
                "user_id": user_id,
                "email": user.email,
                "current_tokens": current_tokens,
                "max_tokens": max_tokens,
                "threshold": threshold,
                "email_sent": delivered,
            },
        ))
        self.db.commit()

        alerts_counter.labels(
            threshold=str(threshold),
            result="sent" if delivered else "email_failed"
        ).inc()
        return True
