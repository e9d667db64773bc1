from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "overtime-engine"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/overtime.db"
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Actor tokens are issued elsewhere; this service only verifies them
    JWT_SECRET: str = "dev_secret_key_change_in_production"
    JWT_ALGORITHM: str = "HS256"

    # Transaction limits (PostgreSQL only), in milliseconds. 0 disables.
    TRANSACTION_TIMEOUT_MS: int = 10000
    LOCK_TIMEOUT_MS: int = 3000

    # How long a retry waits for an in-flight call with the same key
    IDEMPOTENCY_WAIT_SECONDS: float = 5.0

    # Policy fallbacks, used when the policy_configs table has no row for a key
    DEFAULT_MAX_DAILY_MINUTES: int = 240
    DEFAULT_MAX_WEEKLY_MINUTES: int = 720
    DEFAULT_SUBMISSION_DEADLINE_DAYS: int = 3
    DEFAULT_WEEK_START_DAY: int = 6  # Python weekday numbering, 6 = Sunday
    DEFAULT_ESCALATION_TIMEOUT_MINUTES: int = 3 * 24 * 60
    DEFAULT_DRAFT_EXPIRATION_DAYS: int = 30
    DEFAULT_IDEMPOTENCY_TTL_HOURS: int = 24
    DEFAULT_NIGHT_MULTIPLIER: float = 1.5
    DEFAULT_HOLIDAY_MULTIPLIER: float = 2.0
    DEFAULT_REQUIRE_VERIFIED_ATTENDANCE: bool = True
    POLICY_TIMEZONE: str = "UTC"

    # Night shift window in policy-timezone hours: [start, 24) + [0, end)
    NIGHT_SHIFT_START_HOUR: int = 22
    NIGHT_SHIFT_END_HOUR: int = 6

    # Fixed chain used when a department has no usable approval chain
    DEFAULT_APPROVAL_ROLES: str = "supervisor,manager,hr"

    # Maintenance sweeper
    SWEEPER_BATCH_SIZE: int = 100
    MAINTENANCE_ROLE: str = "admin"

    MAX_REASON_LENGTH: int = 2000

    @field_validator("DEFAULT_APPROVAL_ROLES")
    @classmethod
    def require_approval_roles(cls, value: str) -> str:
        if not [r for r in value.split(",") if r.strip()]:
            raise ValueError("DEFAULT_APPROVAL_ROLES must name at least one role")
        return value

    @property
    def default_approval_roles(self) -> list[str]:
        return [r.strip() for r in self.DEFAULT_APPROVAL_ROLES.split(",") if r.strip()]


settings = Settings()
