"""Quota ledger tests: admission control, commits and threshold crossings"""
import pytest
from datetime import datetime, timezone

from conftest import set_monthly_usage
from tokenguard.models.api_key import ApiKey
from tokenguard.models.monthly_usage import MonthlyUsage
from tokenguard.models.plan_limit import PlanLimit
from tokenguard.models.subscription import Subscription
from tokenguard.models.usage_log import UsageLog
from tokenguard.models.user import User
from tokenguard.services.quota_service import (
    QuotaLedger, UsageAlert, REASON_INACTIVE, REASON_LIMIT, percent_of, crossed_thresholds
)
from tokenguard.services.subscription_service import current_month_key


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def ledger(db_session, alerts):
    return QuotaLedger(db_session, alert_dispatcher=alerts.append)


def monthly_row(db_session, user_id):
    db_session.expire_all()
    return db_session.query(MonthlyUsage).filter(
        MonthlyUsage.user_id == user_id,
        MonthlyUsage.month_year == current_month_key()
    ).first()


class TestPercentHelpers:
    def test_percent_rounds_half_up(self):
        assert percent_of(795, 1000) == 80
        assert percent_of(794, 1000) == 79
        assert percent_of(5, 1000) == 1

    def test_crossed_thresholds(self):
        assert crossed_thresholds(79000, 81000, 100000) == [80]
        assert crossed_thresholds(79000, 100000, 100000) == [80, 100]
        assert crossed_thresholds(80000, 99000, 100000) == []
        assert crossed_thresholds(95000, 101000, 100000) == [100]

    def test_crossings_use_exact_counts(self):
        """99.5% rounds to 100 but the limit is not reached yet"""
        assert crossed_thresholds(99000, 99500, 100000) == []
        assert crossed_thresholds(79000, 79500, 100000) == []
        assert crossed_thresholds(79999, 80000, 100000) == [80]


@pytest.mark.critical
class TestCheck:
    """Admission control"""

    def test_fresh_user_is_allowed(self, ledger, test_user):
        result = ledger.check(test_user.id, 1000)
        assert result.allowed is True
        assert result.current_usage == 0
        assert result.limit == 100000
        assert result.percent_used == 0
        assert result.should_warn is False

    def test_reserve_that_fits_is_allowed_at_high_usage(self, ledger, db_session, test_user, alerts):
        """95,000 used, 3,000 requested: allowed, warning shown, no new alert"""
        set_monthly_usage(db_session, test_user.id, 95000)
        result = ledger.check(test_user.id, 3000)
        assert result.allowed is True
        assert result.percent_used == 95
        assert result.should_warn is True
        assert alerts == []

    def test_projected_over_limit_is_refused(self, ledger, db_session, test_user):
        set_monthly_usage(db_session, test_user.id, 95000)
        result = ledger.check(test_user.id, 6000)
        assert result.allowed is False
        assert result.reason == REASON_LIMIT
        assert result.current_usage == 95000

    def test_exactly_at_limit_is_allowed(self, ledger, db_session, test_user):
        set_monthly_usage(db_session, test_user.id, 99000)
        assert ledger.check(test_user.id, 1000).allowed is True

    def test_inactive_subscription_is_refused_before_limit(self, ledger, db_session, test_user):
        sub = db_session.query(Subscription).filter(Subscription.user_id == test_user.id).first()
        sub.status = "past_due"
        db_session.commit()

        result = ledger.check(test_user.id, 0)
        assert result.allowed is False
        assert result.reason == REASON_INACTIVE

    def test_unknown_user_fails_closed(self, ledger):
        result = ledger.check(424242, 10)
        assert result.allowed is False
        assert result.reason == REASON_INACTIVE

    def test_missing_subscription_is_repaired_to_free(self, ledger, db_session):
        user = User(email="delivered+nosub@resend.dev")
        db_session.add(user)
        db_session.commit()

        result = ledger.check(user.id, 10)
        assert result.allowed is True
        sub = db_session.query(Subscription).filter(Subscription.user_id == user.id).first()
        assert sub.plan == "free"
        assert sub.status == "active"

    def test_plan_limit_is_used(self, ledger, test_user_2):
        assert ledger.check(test_user_2.id, 0).limit == 1000000

    def test_missing_plan_limit_falls_back_to_default(self, ledger, db_session, test_user):
        db_session.query(PlanLimit).filter(PlanLimit.plan == "free").delete()
        db_session.commit()
        assert ledger.check(test_user.id, 0).limit == 100000

    def test_projected_crossing_dispatches_early_warning(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 79000)
        result = ledger.check(test_user.id, 2000)
        assert result.allowed is True
        assert alerts == [UsageAlert(test_user.id, 81000, 100000, 80)]

    def test_projection_rounding_to_80_is_not_a_crossing(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 79000)
        assert ledger.check(test_user.id, 500).allowed is True
        assert alerts == []

    def test_check_does_not_write(self, ledger, db_session, test_user):
        ledger.check(test_user.id, 5000)
        assert monthly_row(db_session, test_user.id) is None
        assert db_session.query(UsageLog).count() == 0

    def test_negative_reservation_rejected(self, ledger, test_user):
        with pytest.raises(ValueError):
            ledger.check(test_user.id, -1)


@pytest.mark.critical
class TestCommit:
    """Usage commits"""

    def test_first_commit_creates_monthly_row(self, ledger, db_session, test_user):
        result = ledger.commit(test_user.id, 1500, 0.015, model="gpt-4", endpoint="https://api.openai.com/v1")
        assert result.success is True
        assert result.total_tokens == 1500

        row = monthly_row(db_session, test_user.id)
        assert row.total_tokens == 1500
        assert row.request_count == 1
        assert row.total_cost_usd == pytest.approx(0.015)

        log = db_session.query(UsageLog).one()
        assert log.tokens_used == 1500
        assert log.model == "gpt-4"
        assert log.endpoint == "https://api.openai.com/v1"

    def test_commits_are_additive(self, ledger, db_session, test_user):
        for tokens in (100, 250, 650):
            assert ledger.commit(test_user.id, tokens, tokens / 1000 * 0.01).success

        row = monthly_row(db_session, test_user.id)
        assert row.total_tokens == 1000
        assert row.request_count == 3
        assert row.total_cost_usd == pytest.approx(0.01)
        assert db_session.query(UsageLog).count() == 3

    def test_monthly_total_equals_sum_of_logs(self, ledger, db_session, test_user, test_user_2):
        ledger.commit(test_user.id, 300, 0.003)
        ledger.commit(test_user_2.id, 700, 0.007)
        ledger.commit(test_user.id, 200, 0.002)

        for user in (test_user, test_user_2):
            logs = db_session.query(UsageLog).filter(UsageLog.user_id == user.id).all()
            assert monthly_row(db_session, user.id).total_tokens == sum(log.tokens_used for log in logs)

    def test_commit_over_limit_writes_nothing(self, ledger, db_session, test_user):
        """95,000 used, commit of 6,000 is refused and nothing changes"""
        set_monthly_usage(db_session, test_user.id, 95000)

        result = ledger.commit(test_user.id, 6000, 0.06)
        assert result.success is False
        assert result.blocked is True
        assert result.reason == REASON_LIMIT

        row = monthly_row(db_session, test_user.id)
        assert row.total_tokens == 95000
        assert row.request_count == 1
        assert db_session.query(UsageLog).count() == 0

    def test_commit_for_inactive_subscription_is_blocked(self, ledger, db_session, test_user):
        sub = db_session.query(Subscription).filter(Subscription.user_id == test_user.id).first()
        sub.status = "cancelled"
        db_session.commit()

        result = ledger.commit(test_user.id, 10, 0.0001)
        assert result.blocked is True
        assert result.reason == REASON_INACTIVE
        assert monthly_row(db_session, test_user.id) is None

    def test_crossing_80_dispatches_warning(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 79000)
        result = ledger.commit(test_user.id, 2000, 0.02)

        assert result.success is True
        assert result.percent_used == 81
        assert result.should_warn is True
        assert alerts == [UsageAlert(test_user.id, 81000, 100000, 80)]

    def test_crossing_both_thresholds_dispatches_both(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 70000)
        ledger.commit(test_user.id, 30000, 0.3)
        assert [alert.threshold for alert in alerts] == [80, 100]

    def test_rounded_percent_does_not_trigger_limit_alert(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 99000)
        result = ledger.commit(test_user.id, 500, 0.005)

        assert result.percent_used == 100
        assert alerts == []

        ledger.commit(test_user.id, 500, 0.005)
        assert alerts == [UsageAlert(test_user.id, 100000, 100000, 100)]

    def test_no_alert_without_crossing(self, ledger, db_session, test_user, alerts):
        set_monthly_usage(db_session, test_user.id, 85000)
        ledger.commit(test_user.id, 1000, 0.01)
        assert alerts == []

    def test_refreshes_owned_api_key_last_used(self, ledger, db_session, test_user, vault):
        key = ApiKey(user_id=test_user.id, name="main", encrypted_key=vault.encrypt("sk-1"), key_hint="sk-1")
        db_session.add(key)
        db_session.commit()
        assert key.last_used_at is None

        ledger.commit(test_user.id, 10, 0.0001, api_key_id=key.id)

        db_session.expire_all()
        assert key.last_used_at is not None
        assert db_session.query(UsageLog).one().api_key_id == key.id

    def test_foreign_api_key_is_not_linked(self, ledger, db_session, test_user, test_user_2, vault):
        key = ApiKey(user_id=test_user_2.id, name="theirs", encrypted_key=vault.encrypt("sk-2"), key_hint="sk-2")
        db_session.add(key)
        db_session.commit()

        assert ledger.commit(test_user.id, 10, 0.0001, api_key_id=key.id).success
        assert db_session.query(UsageLog).one().api_key_id is None

    def test_dispatcher_failure_does_not_fail_commit(self, db_session, test_user):
        def broken_dispatcher(alert):
            raise ConnectionError("redis down")

        set_monthly_usage(db_session, test_user.id, 79000)
        result = QuotaLedger(db_session, alert_dispatcher=broken_dispatcher).commit(test_user.id, 2000, 0.02)
        assert result.success is True
        assert monthly_row(db_session, test_user.id).total_tokens == 81000

    def test_rows_are_keyed_by_month(self, ledger, db_session, test_user):
        set_monthly_usage(db_session, test_user.id, 99999, month_year="2020-01")
        assert ledger.commit(test_user.id, 500, 0.005).success is True
        assert monthly_row(db_session, test_user.id).total_tokens == 500

    def test_negative_amounts_rejected(self, ledger, test_user):
        with pytest.raises(ValueError):
            ledger.commit(test_user.id, -5, 0.0)
        with pytest.raises(ValueError):
            ledger.commit(test_user.id, 5, -0.1)
