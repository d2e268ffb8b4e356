"""
Environment configuration.
Secrets and price ids are read at call time so a redeploy with new env values
takes effect without code changes (and tests can patch os.environ).
"""
import os

ENV = os.getenv("ENV", "dev")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")

SESSION_COOKIE_NAME = "aio_session"
SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 7

DEV_USAGE_SALT = "local-dev-usage-salt"


class ConfigurationError(RuntimeError):
    """A required environment setting is missing or malformed."""


def _trim_or_none(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    return value or None


def is_production() -> bool:
    return os.getenv("ENV", ENV) == "production"


def get_app_url() -> str:
    return (_trim_or_none(os.getenv("APP_URL")) or APP_URL).rstrip("/")


def get_usage_salt() -> str:
    return (
        _trim_or_none(os.getenv("USAGE_HASH_SALT"))
        or _trim_or_none(os.getenv("JWT_SECRET"))
        or DEV_USAGE_SALT
    )


def get_stripe_secret_key() -> str:
    key = _trim_or_none(os.getenv("STRIPE_SECRET_KEY"))
    if not key:
        raise ConfigurationError("Missing STRIPE_SECRET_KEY environment variable.")
    return key


def get_stripe_webhook_secret() -> str:
    secret = _trim_or_none(os.getenv("STRIPE_WEBHOOK_SECRET"))
    if not secret:
        raise ConfigurationError("Missing STRIPE_WEBHOOK_SECRET environment variable.")
    return secret


def get_price_ids() -> dict[str, str | None]:
    """Plan key -> configured Stripe price id (None when unset)."""
    return {
        "day_pass": _trim_or_none(os.getenv("STRIPE_PRICE_DAY")),
        "pro_monthly": _trim_or_none(os.getenv("STRIPE_PRICE_MONTHLY")),
        "pro_yearly": _trim_or_none(os.getenv("STRIPE_PRICE_YEARLY")),
    }
