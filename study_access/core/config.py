from datetime import datetime, timezone
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    admin_api_secret: str = Field(default="dev_admin_secret_change_me", alias="ADMIN_API_SECRET")
    scheduler_secret: str = Field(default="dev_scheduler_secret_change_me", alias="SCHEDULER_SECRET")

    user_jwt_secret: str = Field(default="dev_user_jwt_secret_change_me", alias="USER_JWT_SECRET")
    user_jwt_audience: str = Field(default="authenticated", alias="USER_JWT_AUDIENCE")

    billing_api_base_url: str = Field(
        default="https://api.revenuecat.com/v2",
        alias="BILLING_API_BASE_URL",
    )
    billing_api_key: str = Field(default="", alias="BILLING_API_KEY")
    billing_project_id: str = Field(default="", alias="BILLING_PROJECT_ID")
    billing_api_timeout_seconds: float = Field(default=10.0, alias="BILLING_API_TIMEOUT_SECONDS")
    entitlement_id_pro: str = Field(default="pro", alias="ENTITLEMENT_ID_PRO")
    entitlement_id_premium: str = Field(default="premium", alias="ENTITLEMENT_ID_PREMIUM")

    billing_webhook_secret: str = Field(default="", alias="BILLING_WEBHOOK_SECRET")
    billing_webhook_tolerance_seconds: int = Field(
        default=300,
        alias="BILLING_WEBHOOK_TOLERANCE_SECONDS",
    )
    promo_key: str = Field(default="premium_annual_grants_pro_v1", alias="PROMO_KEY")
    promo_target_product_id: str = Field(
        default="flash_premium_annual",
        alias="PROMO_TARGET_PRODUCT_ID",
    )
    promo_start_at: datetime | None = Field(default=None, alias="PROMO_START_AT")
    promo_end_at: datetime | None = Field(default=None, alias="PROMO_END_AT")
    promo_grant_days: int = Field(default=365, alias="PROMO_GRANT_DAYS")

    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_parent_price_id: str = Field(default="", alias="STRIPE_PARENT_PRICE_ID")
    parent_checkout_success_url: str = Field(
        default="http://localhost:3000/parents/success",
        alias="PARENT_CHECKOUT_SUCCESS_URL",
    )
    parent_checkout_cancel_url: str = Field(
        default="http://localhost:3000/parents/cancel",
        alias="PARENT_CHECKOUT_CANCEL_URL",
    )

    push_api_url: str = Field(default="https://exp.host/--/api/v2/push/send", alias="PUSH_API_URL")
    push_upgrade_url: str = Field(default="flash://paywall", alias="PUSH_UPGRADE_URL")
    sendgrid_api_key: str = Field(default="", alias="SENDGRID_API_KEY")
    sendgrid_api_url: str = Field(
        default="https://api.sendgrid.com/v3/mail/send",
        alias="SENDGRID_API_URL",
    )
    email_from_address: str = Field(default="no-reply@localhost", alias="EMAIL_FROM_ADDRESS")
    email_from_name: str = Field(default="Flash", alias="EMAIL_FROM_NAME")
    sendgrid_event_public_key: str = Field(default="", alias="SENDGRID_EVENT_WEBHOOK_PUBLIC_KEY")
    sendgrid_event_tolerance_seconds: int = Field(
        default=600,
        alias="SENDGRID_EVENT_TOLERANCE_SECONDS",
    )
    marketing_base_url: str = Field(default="http://localhost:3000", alias="MARKETING_BASE_URL")
    parent_invite_daily_limit: int = Field(default=3, alias="PARENT_INVITE_DAILY_LIMIT")

    trial_days: int = Field(default=7, alias="TRIAL_DAYS")
    trial_warning_days: int = Field(default=3, alias="TRIAL_WARNING_DAYS")
    trial_sweep_batch_size: int = Field(default=500, alias="TRIAL_SWEEP_BATCH_SIZE")

    ops_alert_webhook_url: str = Field(default="", alias="OPS_ALERT_WEBHOOK_URL")
    ops_alert_slack_webhook_url: str = Field(default="", alias="OPS_ALERT_SLACK_WEBHOOK_URL")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    celery_broker_url: str = Field(default="redis://localhost:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2",
        alias="CELERY_RESULT_BACKEND",
    )

    @field_validator("promo_start_at", "promo_end_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_promo_window(self) -> "Settings":
        if (
            self.promo_start_at is not None
            and self.promo_end_at is not None
            and self.promo_end_at <= self.promo_start_at
        ):
            raise ValueError("PROMO_END_AT must be later than PROMO_START_AT")
        if self.promo_grant_days <= 0:
            raise ValueError("PROMO_GRANT_DAYS must be positive")
        return self

    def entitlement_id_for_tier(self, tier: str) -> str:
        if tier == "premium":
            return self.entitlement_id_premium
        if tier == "pro":
            return self.entitlement_id_pro
        raise ValueError(f"unknown tier: {tier}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
