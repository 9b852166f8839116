"""Application settings and configuration.

This module defines all configuration options for the badge rotation service.
Settings are loaded from environment variables with sensible defaults. Values
under "Rotation defaults" seed the per-scope ``moderation_config`` rows the
first time a scope is touched; operators tune individual scopes afterwards.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Badge Rotation", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    operator_user_ids: list[str] = Field(default_factory=list, alias="OPERATOR_USER_IDS")

    # Database configuration
    database_url: str = Field(default="sqlite:///./rotation.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Rotation defaults
    badge_default_ratio: int = Field(default=50, alias="MOD_BADGE_DEFAULT_RATIO")
    badge_min_duty_days: int = Field(default=3, alias="MOD_BADGE_MIN_DUTY_DAYS")
    badge_max_duty_days: int = Field(default=7, alias="MOD_BADGE_MAX_DUTY_DAYS")
    invitation_timeout_hours: int = Field(default=12, alias="MOD_INVITATION_TIMEOUT_HOURS")
    min_actions_required: int = Field(default=5, alias="MOD_MIN_ACTIONS_REQUIRED")

    # Eligibility requirements
    min_reputation: int = Field(default=0, alias="MOD_ELIGIBILITY_MIN_REPUTATION")
    min_account_age_days: int = Field(default=7, alias="MOD_ELIGIBILITY_MIN_ACCOUNT_AGE_DAYS")
    activity_window_days: int = Field(default=30, alias="MOD_ELIGIBILITY_ACTIVITY_WINDOW_DAYS")
    cooldown_days: int = Field(default=14, alias="MOD_ELIGIBILITY_COOLDOWN_DAYS")

    # Rewards and penalties
    reward_pco: float = Field(default=0.5, alias="MOD_REWARD_PCO")
    reward_reputation: int = Field(default=5, alias="MOD_REWARD_REPUTATION")
    penalty_reputation: int = Field(default=3, alias="MOD_PENALTY_REPUTATION")
    removal_reputation_penalty: int = Field(default=1, alias="MOD_REMOVAL_REPUTATION_PENALTY")
    reward_token: str = Field(default="PCO", alias="MOD_REWARD_TOKEN")
    system_wallet_address: str = Field(default="", alias="SYSTEM_WALLET_ADDRESS")

    # Milestones: (threshold, pco, reputation)
    milestone_veteran_badges: int = Field(default=10, alias="MOD_MILESTONE_VETERAN_BADGES")
    milestone_centurion_actions: int = Field(default=100, alias="MOD_MILESTONE_CENTURION_ACTIONS")
    milestone_guardian_badges: int = Field(default=1, alias="MOD_MILESTONE_GUARDIAN_BADGES")

    # Request limits
    pass_reason_min_length: int = Field(default=10, alias="MOD_PASS_REASON_MIN_LENGTH")
    max_batch_review_size: int = Field(default=20, alias="MOD_MAX_BATCH_REVIEW_SIZE")
    queue_page_size: int = Field(default=50, alias="MOD_QUEUE_PAGE_SIZE")
    backfill_max_scopes: int = Field(default=100, alias="MOD_BACKFILL_MAX_SCOPES")
    assignment_max_attempts: int = Field(default=3, alias="MOD_ASSIGNMENT_MAX_ATTEMPTS")

    # Housekeeping horizons
    invitation_retention_days: int = Field(default=30, alias="MOD_INVITATION_RETENTION_DAYS")
    archive_after_days: int = Field(default=90, alias="MOD_ARCHIVE_AFTER_DAYS")

    # Scheduler: every job runs when (epoch_seconds - offset) % interval == 0
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    scheduler_scope_concurrency: int = Field(default=4, alias="SCHEDULER_SCOPE_CONCURRENCY")
    balance_check_interval_seconds: int = Field(default=3600, alias="BALANCE_CHECK_INTERVAL")
    balance_check_offset_seconds: int = Field(default=0, alias="BALANCE_CHECK_OFFSET")
    timeout_sweep_interval_seconds: int = Field(default=3600, alias="TIMEOUT_SWEEP_INTERVAL")
    timeout_sweep_offset_seconds: int = Field(default=1800, alias="TIMEOUT_SWEEP_OFFSET")
    expiry_sweep_interval_seconds: int = Field(default=3600, alias="EXPIRY_SWEEP_INTERVAL")
    expiry_sweep_offset_seconds: int = Field(default=900, alias="EXPIRY_SWEEP_OFFSET")
    daily_aggregation_offset_seconds: int = Field(default=7200, alias="DAILY_AGGREGATION_OFFSET")
    housekeeping_interval_seconds: int = Field(default=6 * 3600, alias="HOUSEKEEPING_INTERVAL")

    # Immutable ledger integration
    ledger_enabled: bool = Field(default=False, alias="LEDGER_ENABLED")
    ledger_base_url: str | None = Field(default=None, alias="LEDGER_BASE_URL")
    ledger_instance_id: str = Field(default="rotation-local", alias="LEDGER_INSTANCE_ID")
    ledger_shared_secret: str | None = Field(default=None, alias="LEDGER_SHARED_SECRET")
    ledger_audience: str = Field(default="ledger", alias="LEDGER_JWT_AUD")
    ledger_token_ttl_seconds: int = Field(default=300, alias="LEDGER_TOKEN_TTL_SECONDS")
    ledger_http_timeout_seconds: float = Field(default=10.0, alias="LEDGER_HTTP_TIMEOUT_SECONDS")

    # Token transfer integration
    token_transfer_enabled: bool = Field(default=False, alias="TOKEN_TRANSFER_ENABLED")
    token_transfer_base_url: str | None = Field(default=None, alias="TOKEN_TRANSFER_BASE_URL")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def duty_days_range(self) -> tuple[int, int]:
        """Inclusive bounds for randomly drawn duty lengths."""
        return self.badge_min_duty_days, self.badge_max_duty_days


settings = Settings()  # type: ignore[call-arg]
