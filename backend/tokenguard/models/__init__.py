"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from tokenguard.models.base import Base
from tokenguard.models.user import User
from tokenguard.models.subscription import Subscription
from tokenguard.models.plan_limit import PlanLimit
from tokenguard.models.monthly_usage import MonthlyUsage
from tokenguard.models.usage_log import UsageLog
from tokenguard.models.api_key import ApiKey
from tokenguard.models.spending_alert import SpendingAlert
from tokenguard.models.admin_notification import AdminNotification
from tokenguard.models.system_setting import SystemSetting

# Export all for convenience
__all__ = [
    "Base", "User", "Subscription", "PlanLimit", "MonthlyUsage", "UsageLog",
    "ApiKey", "SpendingAlert", "AdminNotification", "SystemSetting"
]
