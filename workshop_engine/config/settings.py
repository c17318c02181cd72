from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Used by background jobs (RLS bypass)

    # App
    app_name: str = "makerlab-workshops"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"
    public_booking_rate_limit: str = "10/minute"

    # Scheduling
    academy_name: str = "MakerLab Academy"
    academy_timezone: str = "UTC"
    default_window_days: int = 45
    public_window_days: int = 60
    public_booking_base_url: str = "http://localhost:5173"

    # Reminders
    reminder_scheduler_enabled: bool = False
    reminder_lead_hours: int = 24
    reminder_scan_interval_sec: int = 900

    # Outreach (WhatsApp over Twilio)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_whatsapp_from: Optional[str] = None
    outbound_timeout_sec: float = 10.0
    outbound_max_attempts: int = 3
    outbound_retry_backoff_sec: float = 1.0
    outbound_sending_timeout_sec: int = 600  # a "sending" row older than this is treated as a crashed send
    outbound_retry_limit: int = 12  # total attempts before a failed message is left for staff

    # CRM sync
    crm_sync_max_attempts: int = 3
    crm_sync_retry_backoff_sec: float = 1.0
    crm_sync_claim_timeout_sec: int = 600

    # Seat counter
    seat_release_max_attempts: int = 3
    seat_release_retry_backoff_sec: float = 0.5

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def outreach_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_from)

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore"
    )


settings = Settings()
