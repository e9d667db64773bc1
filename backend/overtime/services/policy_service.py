"""Overtime policy values: database overrides on top of settings defaults.

Values are read from ``policy_configs`` on every ``load()``, so an operator
changing a row takes effect on the next request without a restart.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from overtime.core.config import settings
from overtime.core.errors import ValidationError
from overtime.repositories.policy_config_repository import PolicyConfigRepository

logger = logging.getLogger(__name__)


class PolicyKey:
    MAX_DAILY_MINUTES = "max_overtime_day_min"
    MAX_WEEKLY_MINUTES = "max_overtime_week_min"
    SUBMISSION_DEADLINE_DAYS = "submission_deadline_days"
    WEEK_START_DAY = "week_start_day"
    ESCALATION_TIMEOUT_MINUTES = "escalation_timeout_min"
    DRAFT_EXPIRATION_DAYS = "draft_expiration_days"
    IDEMPOTENCY_TTL_HOURS = "idempotency_ttl_hours"
    NIGHT_MULTIPLIER = "night_multiplier"
    HOLIDAY_MULTIPLIER = "holiday_multiplier"
    REQUIRE_VERIFIED_ATTENDANCE = "require_verified_attendance"
    HOLIDAY_DATES = "holiday_dates"


_FLOAT_KEYS = frozenset({PolicyKey.NIGHT_MULTIPLIER, PolicyKey.HOLIDAY_MULTIPLIER})
_BOOL_KEYS = frozenset({PolicyKey.REQUIRE_VERIFIED_ATTENDANCE})


def _defaults() -> dict[str, Any]:
    return {
        PolicyKey.MAX_DAILY_MINUTES: settings.DEFAULT_MAX_DAILY_MINUTES,
        PolicyKey.MAX_WEEKLY_MINUTES: settings.DEFAULT_MAX_WEEKLY_MINUTES,
        PolicyKey.SUBMISSION_DEADLINE_DAYS: settings.DEFAULT_SUBMISSION_DEADLINE_DAYS,
        PolicyKey.WEEK_START_DAY: settings.DEFAULT_WEEK_START_DAY,
        PolicyKey.ESCALATION_TIMEOUT_MINUTES: settings.DEFAULT_ESCALATION_TIMEOUT_MINUTES,
        PolicyKey.DRAFT_EXPIRATION_DAYS: settings.DEFAULT_DRAFT_EXPIRATION_DAYS,
        PolicyKey.IDEMPOTENCY_TTL_HOURS: settings.DEFAULT_IDEMPOTENCY_TTL_HOURS,
        PolicyKey.NIGHT_MULTIPLIER: settings.DEFAULT_NIGHT_MULTIPLIER,
        PolicyKey.HOLIDAY_MULTIPLIER: settings.DEFAULT_HOLIDAY_MULTIPLIER,
        PolicyKey.REQUIRE_VERIFIED_ATTENDANCE: settings.DEFAULT_REQUIRE_VERIFIED_ATTENDANCE,
        PolicyKey.HOLIDAY_DATES: frozenset(),
    }


@dataclass(frozen=True)
class OvertimePolicy:
    max_daily_minutes: int
    max_weekly_minutes: int
    submission_deadline_days: int
    week_start_day: int
    escalation_timeout_minutes: int
    draft_expiration_days: int
    idempotency_ttl_hours: int
    night_multiplier: float
    holiday_multiplier: float
    require_verified_attendance: bool
    holiday_dates: frozenset[date]
    timezone: ZoneInfo


def _coerce_dates(raw: Any) -> frozenset[date] | None:
    if not isinstance(raw, list | tuple):
        return None
    try:
        return frozenset(date.fromisoformat(str(item)) for item in raw)
    except ValueError:
        return None


class PolicyService:
    def __init__(self, db: Session):
        self.repo = PolicyConfigRepository(db)

    @staticmethod
    def _coerce(key: str, raw: Any) -> Any:
        """Typed value for ``key``, or ``None`` when ``raw`` is unusable."""
        # Rows may hold a bare value or {"value": v}
        if isinstance(raw, dict):
            raw = raw.get("value")
        if key == PolicyKey.HOLIDAY_DATES:
            return _coerce_dates(raw)
        if key in _BOOL_KEYS:
            return raw if isinstance(raw, bool) else None
        if isinstance(raw, bool) or not isinstance(raw, int | float):
            return None
        if key in _FLOAT_KEYS:
            # A multiplier never lowers the base rate
            return float(raw) if raw >= 1 else None
        value = int(raw)
        if key == PolicyKey.WEEK_START_DAY:
            return value if 0 <= value <= 6 else None
        return value if value >= 0 else None

    def get(self, key: str) -> Any:
        defaults = _defaults()
        if key not in defaults:
            raise KeyError(key)
        config = self.repo.get_by_key(key)
        if config is None:
            return defaults[key]
        value = self._coerce(key, config.value)
        if value is None:
            logger.warning("Ignoring invalid policy value for %s: %r", key, config.value)
            return defaults[key]
        return value

    def load(self) -> OvertimePolicy:
        values = _defaults()
        for config in self.repo.get_all():
            key = str(config.key)
            if key not in values:
                continue
            value = self._coerce(key, config.value)
            if value is None:
                logger.warning("Ignoring invalid policy value for %s: %r", key, config.value)
                continue
            values[key] = value
        return OvertimePolicy(
            max_daily_minutes=values[PolicyKey.MAX_DAILY_MINUTES],
            max_weekly_minutes=values[PolicyKey.MAX_WEEKLY_MINUTES],
            submission_deadline_days=values[PolicyKey.SUBMISSION_DEADLINE_DAYS],
            week_start_day=values[PolicyKey.WEEK_START_DAY],
            escalation_timeout_minutes=values[PolicyKey.ESCALATION_TIMEOUT_MINUTES],
            draft_expiration_days=values[PolicyKey.DRAFT_EXPIRATION_DAYS],
            idempotency_ttl_hours=values[PolicyKey.IDEMPOTENCY_TTL_HOURS],
            night_multiplier=values[PolicyKey.NIGHT_MULTIPLIER],
            holiday_multiplier=values[PolicyKey.HOLIDAY_MULTIPLIER],
            require_verified_attendance=values[PolicyKey.REQUIRE_VERIFIED_ATTENDANCE],
            holiday_dates=values[PolicyKey.HOLIDAY_DATES],
            timezone=ZoneInfo(settings.POLICY_TIMEZONE),
        )

    def set(self, key: str, value: Any) -> None:
        """Store an override. Holiday dates are given as ISO date strings."""
        if key not in _defaults():
            raise ValidationError(f"Unknown policy key: {key}", {"key": key})
        if self._coerce(key, value) is None:
            raise ValidationError(f"Invalid value for {key}", {"key": key, "value": value})
        self.repo.upsert(key, list(value) if key == PolicyKey.HOLIDAY_DATES else value)
