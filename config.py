import os

from dotenv import load_dotenv

load_dotenv()


def _int_list(raw: str) -> list[int]:
    return [int(part) for part in raw.split(",") if part.strip()]


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker / result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Email (Resend) ---
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com/emails")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "Notifi <notifications@notifi.app>")

    # --- Push (Expo) ---
    EXPO_PUSH_URL = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- Provider HTTP behaviour ---
    PROVIDER_TIMEOUT = float(os.environ.get("PROVIDER_TIMEOUT", "10"))
    PROVIDER_ATTEMPTS = int(os.environ.get("PROVIDER_ATTEMPTS", "3"))

    # --- Links rendered into messages ---
    APP_URL = os.environ.get("APP_URL", "https://notifi.app")

    # --- Delivery worker ---
    MAX_RETRIES = int(os.environ.get("MAX_RETRIES", "3"))
    RETRY_BACKOFF_MINUTES = int(os.environ.get("RETRY_BACKOFF_MINUTES", "5"))
    SWEEP_BATCH_SIZE = int(os.environ.get("SWEEP_BATCH_SIZE", "100"))
    SWEEP_CONCURRENCY = int(os.environ.get("SWEEP_CONCURRENCY", "10"))
    SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "60"))
    CLAIM_TIMEOUT_MINUTES = int(os.environ.get("CLAIM_TIMEOUT_MINUTES", "15"))
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # --- Scheduling defaults ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "UTC")
    DEFAULT_LEAD_TIMES = _int_list(os.environ.get("DEFAULT_LEAD_TIMES", "0"))
    DEFAULT_CHANNELS = [
        c.strip() for c in os.environ.get("DEFAULT_CHANNELS", "email").split(",") if c.strip()
    ]

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
