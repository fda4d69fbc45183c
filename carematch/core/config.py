import os
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
APP_DEBUG = _get_bool(os.getenv("APP_DEBUG"), default=False)
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Europe/Paris")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Money-affecting rates are kept as strings until they become Decimals.
PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "0.12")
NO_SHOW_FAMILY_CHARGE_RATIO = os.getenv("NO_SHOW_FAMILY_CHARGE_RATIO", "0.5")
CANCELLATION_CUTOFF_HOURS = int(os.getenv("CANCELLATION_CUTOFF_HOURS", "48"))
NO_SHOW_GRACE_MINUTES = int(os.getenv("NO_SHOW_GRACE_MINUTES", "60"))
VIDEO_JOIN_LEAD_MINUTES = int(os.getenv("VIDEO_JOIN_LEAD_MINUTES", "15"))
MAX_PIN_ATTEMPTS = int(os.getenv("MAX_PIN_ATTEMPTS", "5"))


class LifecyclePolicy(BaseModel):
    """Tunable rules of the appointment lifecycle."""

    model_config = ConfigDict(frozen=True)

    platform_fee_rate: Decimal = Decimal("0.12")
    no_show_family_charge_ratio: Decimal = Decimal("0.5")
    cancellation_cutoff_hours: int = 48
    no_show_grace_minutes: int = 60
    video_join_lead_minutes: int = 15
    max_pin_attempts: int = 5
    timezone: str = "Europe/Paris"


def load_policy() -> LifecyclePolicy:
    return LifecyclePolicy(
        platform_fee_rate=Decimal(PLATFORM_FEE_RATE),
        no_show_family_charge_ratio=Decimal(NO_SHOW_FAMILY_CHARGE_RATIO),
        cancellation_cutoff_hours=CANCELLATION_CUTOFF_HOURS,
        no_show_grace_minutes=NO_SHOW_GRACE_MINUTES,
        video_join_lead_minutes=VIDEO_JOIN_LEAD_MINUTES,
        max_pin_attempts=MAX_PIN_ATTEMPTS,
        timezone=APP_TIMEZONE,
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not Decimal("0") <= Decimal(PLATFORM_FEE_RATE) < Decimal("1"):
        raise RuntimeError("PLATFORM_FEE_RATE must be between 0 and 1.")
    if MAX_PIN_ATTEMPTS < 1:
        raise RuntimeError("MAX_PIN_ATTEMPTS must be at least 1.")
