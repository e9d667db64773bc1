"""Tests for policy lookup with database overrides."""

from datetime import date

import pytest
from sqlalchemy.orm import Session

from overtime.core.config import settings
from overtime.core.errors import ValidationError
from overtime.models.policy_config import PolicyConfig
from overtime.repositories.policy_config_repository import PolicyConfigRepository
from overtime.services.policy_service import PolicyKey, PolicyService


@pytest.fixture
def service(db_session: Session) -> PolicyService:
    return PolicyService(db_session)


class TestPolicyDefaults:
    def test_load_without_rows_uses_settings(self, service):
        policy = service.load()

        assert policy.max_daily_minutes == settings.DEFAULT_MAX_DAILY_MINUTES
        assert policy.max_weekly_minutes == settings.DEFAULT_MAX_WEEKLY_MINUTES
        assert policy.submission_deadline_days == settings.DEFAULT_SUBMISSION_DEADLINE_DAYS
        assert policy.week_start_day == 6
        assert policy.escalation_timeout_minutes == 4320
        assert policy.draft_expiration_days == 30
        assert policy.idempotency_ttl_hours == 24
        assert str(policy.timezone) == settings.POLICY_TIMEZONE

    def test_get_default(self, service):
        assert service.get(PolicyKey.MAX_DAILY_MINUTES) == 240

    def test_get_unknown_key(self, service):
        with pytest.raises(KeyError):
            service.get("no_such_key")


class TestPolicyOverrides:
    def test_set_then_get(self, service):
        service.set(PolicyKey.MAX_DAILY_MINUTES, 300)

        assert service.get(PolicyKey.MAX_DAILY_MINUTES) == 300
        assert service.load().max_daily_minutes == 300

    def test_changes_apply_without_restart(self, service, db_session):
        service.set(PolicyKey.MAX_WEEKLY_MINUTES, 600)
        assert service.load().max_weekly_minutes == 600

        PolicyConfigRepository(db_session).upsert(PolicyKey.MAX_WEEKLY_MINUTES, 900)

        assert service.load().max_weekly_minutes == 900

    def test_wrapped_value_is_accepted(self, service, db_session):
        db_session.add(PolicyConfig(key=PolicyKey.SUBMISSION_DEADLINE_DAYS, value={"value": 5}))
        db_session.commit()

        assert service.get(PolicyKey.SUBMISSION_DEADLINE_DAYS) == 5

    def test_invalid_row_falls_back(self, service, db_session):
        db_session.add(PolicyConfig(key=PolicyKey.WEEK_START_DAY, value=9))
        db_session.add(PolicyConfig(key=PolicyKey.MAX_DAILY_MINUTES, value="lots"))
        db_session.commit()

        policy = service.load()

        assert policy.week_start_day == settings.DEFAULT_WEEK_START_DAY
        assert policy.max_daily_minutes == settings.DEFAULT_MAX_DAILY_MINUTES

    def test_unrelated_rows_are_ignored(self, service, db_session):
        db_session.add(PolicyConfig(key="feature_flag", value=True))
        db_session.commit()

        assert service.load().max_daily_minutes == settings.DEFAULT_MAX_DAILY_MINUTES

    def test_set_unknown_key(self, service):
        with pytest.raises(ValidationError):
            service.set("no_such_key", 1)

    def test_set_negative_value(self, service):
        with pytest.raises(ValidationError):
            service.set(PolicyKey.MAX_DAILY_MINUTES, -1)

    def test_set_boolean_value(self, service):
        with pytest.raises(ValidationError):
            service.set(PolicyKey.MAX_DAILY_MINUTES, True)


class TestPayRateKeys:
    def test_defaults(self, service):
        policy = service.load()

        assert policy.night_multiplier == settings.DEFAULT_NIGHT_MULTIPLIER
        assert policy.holiday_multiplier == settings.DEFAULT_HOLIDAY_MULTIPLIER
        assert policy.holiday_dates == frozenset()

    def test_multiplier_override(self, service):
        service.set(PolicyKey.NIGHT_MULTIPLIER, 1.25)
        service.set(PolicyKey.HOLIDAY_MULTIPLIER, 3)

        policy = service.load()

        assert policy.night_multiplier == 1.25
        assert policy.holiday_multiplier == 3.0

    def test_multiplier_below_one_rejected(self, service):
        with pytest.raises(ValidationError):
            service.set(PolicyKey.NIGHT_MULTIPLIER, 0.5)

    def test_holiday_dates(self, service):
        service.set(PolicyKey.HOLIDAY_DATES, ["2026-12-25", "2027-01-01"])

        assert service.load().holiday_dates == frozenset({date(2026, 12, 25), date(2027, 1, 1)})

    def test_malformed_holiday_dates_rejected(self, service):
        with pytest.raises(ValidationError):
            service.set(PolicyKey.HOLIDAY_DATES, ["christmas"])
        with pytest.raises(ValidationError):
            service.set(PolicyKey.HOLIDAY_DATES, "2026-12-25")


class TestAttendanceKey:
    def test_follows_settings_default(self, service, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_REQUIRE_VERIFIED_ATTENDANCE", True)

        assert service.load().require_verified_attendance is True

    def test_override(self, service):
        service.set(PolicyKey.REQUIRE_VERIFIED_ATTENDANCE, True)

        assert service.get(PolicyKey.REQUIRE_VERIFIED_ATTENDANCE) is True

    def test_non_boolean_rejected(self, service):
        with pytest.raises(ValidationError):
            service.set(PolicyKey.REQUIRE_VERIFIED_ATTENDANCE, 1)
