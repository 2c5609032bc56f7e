from pydantic_settings import BaseSettings
from typing import Dict, Optional
import os


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase configuration (auth only; core state lives in DATABASE_URL)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_jwt_secret: str = os.getenv("SUPABASE_JWT_SECRET", "")

    # Database configuration (for SQLAlchemy - connects to Supabase PostgreSQL)
    database_url: Optional[str] = os.getenv("DATABASE_URL", "")
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Frontend URL (for CORS)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    public_api_url: str = os.getenv("PUBLIC_API_URL", "http://localhost:8000")

    # Stripe
    stripe_secret: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    # Price id -> credits per unit, e.g. {"price_123": 1, "price_456": 4}
    stripe_price_credits: Dict[str, int] = {}

    # Calendly
    calendly_webhook_token: str = os.getenv("CALENDLY_WEBHOOK_TOKEN", "")
    calendly_signing_key: str = os.getenv("CALENDLY_SIGNING_KEY", "")
    calendly_booking_url: str = os.getenv("CALENDLY_BOOKING_URL", "https://calendly.com/")

    # SignNow
    signnow_api_base: str = os.getenv("SIGNNOW_API_BASE", "https://api.signnow.com")
    signnow_bearer_token: str = os.getenv("SIGNNOW_BEARER_TOKEN", "")
    signnow_basic_auth: str = os.getenv("SIGNNOW_BASIC_AUTH", "")
    signnow_username: str = os.getenv("SIGNNOW_USERNAME", "")
    signnow_password: str = os.getenv("SIGNNOW_PASSWORD", "")
    signnow_waiver_template_id: str = os.getenv("SIGNNOW_WAIVER_TEMPLATE_ID", "")
    signnow_from_email: str = os.getenv("SIGNNOW_FROM_EMAIL", "")
    signnow_waiver_role_name: str = os.getenv("SIGNNOW_WAIVER_ROLE_NAME", "Participant")
    signnow_invite_expiration_days: int = int(os.getenv("SIGNNOW_INVITE_EXPIRATION_DAYS", "30"))

    # Outbound email collaborator (edge function accepting {to, subject, html})
    email_function_url: str = os.getenv("EMAIL_FUNCTION_URL", "")
    cron_invoke_key: str = os.getenv("CRON_INVOKE_KEY", "")

    # Booking passes
    booking_pass_ttl_hours: int = int(os.getenv("BOOKING_PASS_TTL_HOURS", "48"))
    booking_pass_salt: str = os.getenv("BOOKING_PASS_SALT", "change-this-salt")

    # Bounded timeout for every outbound provider call (seconds)
    provider_timeout_seconds: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))

    # Waivers are tracked per calendar year unless pinned
    waiver_year: Optional[int] = None

    business_name: str = os.getenv("BUSINESS_NAME", "Happens By Chance")

    class Config:
        env_file = ".env"


settings = Settings()
