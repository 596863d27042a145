import os
from datetime import timedelta


def normalize_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql://", 1)
    return raw_url


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-unsafe-key")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///instance/settlement.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }
    CACHE_TYPE = os.getenv("CACHE_TYPE", "SimpleCache")
    CACHE_DEFAULT_TIMEOUT = int(os.getenv("CACHE_DEFAULT_TIMEOUT", "120"))
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "200 per day;80 per hour")
    RATELIMIT_PAYOUT = os.getenv("RATELIMIT_PAYOUT", "10 per minute")

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = env_flag("SESSION_COOKIE_SECURE")
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_DAYS", "7")))
    REMEMBER_COOKIE_HTTPONLY = True
    SENTRY_DSN = os.getenv("SENTRY_DSN")

    # Settlement engine
    PAYMENT_TIMEOUT_MINUTES = int(os.getenv("PAYMENT_TIMEOUT_MINUTES", "60"))
    MIN_PAYOUT_AMOUNT = int(os.getenv("MIN_PAYOUT_AMOUNT", "0"))
    TIER_ALLOW_DOWNGRADE = env_flag("TIER_ALLOW_DOWNGRADE")
    AUTO_CONFIRM_ON_PAYMENT = env_flag("AUTO_CONFIRM_ON_PAYMENT", "true")

    GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://app.sandbox.midtrans.com/snap/v1")
    GATEWAY_SERVER_KEY = os.getenv("GATEWAY_SERVER_KEY", "")
    GATEWAY_VERIFY_SIGNATURE = env_flag("GATEWAY_VERIFY_SIGNATURE", "true")
    GATEWAY_TIMEOUT = int(os.getenv("GATEWAY_TIMEOUT", "20"))

    NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")
    NOTIFY_WEBHOOK_TOKEN = os.getenv("NOTIFY_WEBHOOK_TOKEN")
    NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "5"))
    NOTIFY_BATCH_SIZE = int(os.getenv("NOTIFY_BATCH_SIZE", "50"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    GATEWAY_VERIFY_SIGNATURE = env_flag("GATEWAY_VERIFY_SIGNATURE")


class ProductionConfig(BaseConfig):
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CACHE_TYPE = "NullCache"
    RATELIMIT_ENABLED = False
    GATEWAY_SERVER_KEY = "test-server-key"
    GATEWAY_VERIFY_SIGNATURE = False
    NOTIFY_WEBHOOK_URL = None
    PAYMENT_TIMEOUT_MINUTES = 60
    MIN_PAYOUT_AMOUNT = 0
    TIER_ALLOW_DOWNGRADE = False
    AUTO_CONFIRM_ON_PAYMENT = True


config_by_env = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
