import os
from typing import Optional

from pydantic import BaseModel


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    persistence_backend: str = os.getenv("PERSISTENCE_BACKEND", "supabase")
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_key: Optional[str] = os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY")
    api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8000")
    cors_origins: list[str] = [
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
    ]
    twilio_account_sid: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    twilio_phone_number: Optional[str] = os.getenv("TWILIO_PHONE_NUMBER")
    business_name: str = os.getenv("BUSINESS_NAME", "GJ Fadezz")
    booking_url: str = os.getenv("BOOKING_URL", "http://localhost:8000/booking.html")
    reminders_enabled: bool = _env_bool("REMINDERS_ENABLED", "true")
    reminder_interval_seconds: int = int(os.getenv("REMINDER_INTERVAL_SECONDS", "300"))
    reminder_window_start_minutes: int = int(os.getenv("REMINDER_WINDOW_START_MINUTES", "90"))
    reminder_window_end_minutes: int = int(os.getenv("REMINDER_WINDOW_END_MINUTES", "150"))
    refresh_interval_seconds: float = float(os.getenv("REFRESH_INTERVAL_SECONDS", "5"))
    default_duration_minutes: int = int(os.getenv("DEFAULT_DURATION_MINUTES", "45"))


settings = Settings()
