from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
    )
    database_url: str = ""

    auth_jwt_secret: str = Field(
        default="",
        validation_alias=AliasChoices("AUTH_JWT_SECRET", "JWT_SECRET"),
    )
    auth_jwt_audience: str = Field(
        default="authenticated",
        validation_alias=AliasChoices("AUTH_JWT_AUDIENCE", "JWT_AUDIENCE"),
    )

    docs_enabled: bool = True
    openapi_enabled: bool = True
    expose_error_details: bool = False

    enable_calendar_engine: bool = True
    enable_recurring_jobs: bool = False
    hold_expiry_sweep_interval_seconds: int = 60

    calendar_default_timezone: str = "America/Los_Angeles"
    calendar_default_slot_minutes: int = 30
    # Default business hours apply to every weekday when an org has no table.
    calendar_default_open_minute: int = Field(default=8 * 60, ge=0, le=1440)
    calendar_default_close_minute: int = Field(default=18 * 60, ge=0, le=1440)
    calendar_default_quiet_hours_start_minute: int = Field(default=20 * 60, ge=0, le=1439)
    calendar_default_quiet_hours_end_minute: int = Field(default=8 * 60, ge=0, le=1439)

    hold_default_expiry_minutes: int = 10
    hold_min_expiry_minutes: int = 1
    hold_max_expiry_minutes: int = 120

    booking_min_duration_minutes: int = 15
    booking_max_duration_minutes: int = 12 * 60
    next_open_default_lookahead_days: int = 7
    next_open_max_lookahead_days: int = 21
    round_robin_test_max_iterations: int = 30

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: list[str] = Field(
        default_factory=lambda: [
            "phone",
            "email",
            "customer_name",
            "address_line",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PATCH",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
