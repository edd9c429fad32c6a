import os
from datetime import timedelta

from .env import env_bool, env_float, env_int, env_list


class Settings:
    ENV: str = os.getenv("ENV", "dev")
    DEV_MODE: bool = ENV.lower() == "dev"
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = env_int("APP_PORT", 8090)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    # Store
    DB_URL: str = os.getenv("DB_URL", "sqlite:///./ridehail.db")
    DB_TIMEOUT_SECS: float = env_float("DB_TIMEOUT_SECS", 5.0)
    AUTO_CREATE_SCHEMA: bool = env_bool("AUTO_CREATE_SCHEMA", default=DEV_MODE)
    # Auth
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change_me_in_prod")
    JWT_EXPIRES_MINUTES: int = env_int("JWT_EXPIRES_MINUTES", 43200)
    ALLOWED_ORIGINS: list[str] = env_list(
        "ALLOWED_ORIGINS",
        default=["*"] if DEV_MODE else [],
    )
    ADMIN_TOKEN: str = os.getenv("ADMIN_TOKEN", "")
    # Payment processor
    PAYMENTS_BASE_URL: str = os.getenv("PAYMENTS_BASE_URL", "")
    PAYMENTS_INTERNAL_SECRET: str = os.getenv("PAYMENTS_INTERNAL_SECRET", "dev_secret")
    PAYMENTS_TIMEOUT_SECS: float = env_float("PAYMENTS_TIMEOUT_SECS", 5.0)
    PAYMENTS_CB_ENABLED: bool = env_bool("PAYMENTS_CB_ENABLED", default=False)
    PAYMENTS_CB_THRESHOLD: int = env_int("PAYMENTS_CB_THRESHOLD", 3)
    PAYMENTS_CB_COOLDOWN_SECS: int = env_int("PAYMENTS_CB_COOLDOWN_SECS", 60)
    # Route estimates (used when the client does not supply distance/duration)
    AVG_SPEED_KMPH: float = env_float("AVG_SPEED_KMPH", 30.0)
    ROAD_FACTOR: float = env_float("ROAD_FACTOR", 1.3)
    # OTP
    OTP_MODE: str = os.getenv("OTP_MODE", "dev")  # dev|redis
    OTP_DEV_CODE: str = os.getenv("OTP_DEV_CODE", "123456")
    OTP_TTL_SECS: int = env_int("OTP_TTL_SECS", 300)
    OTP_MAX_ATTEMPTS: int = env_int("OTP_MAX_ATTEMPTS", 5)
    OTP_STORAGE_SECRET: str = os.getenv("OTP_STORAGE_SECRET", "")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    SENTRY_DSN: str = os.getenv("SENTRY_DSN", "").strip()
    SENTRY_TRACES_SAMPLE_RATE: float = env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0)

    @property
    def jwt_expires_delta(self) -> timedelta:
        return timedelta(minutes=self.JWT_EXPIRES_MINUTES)


def production_problems(s: Settings) -> list[str]:
    """Settings that are acceptable in dev but unsafe anywhere else."""
    problems = []
    if not s.ALLOWED_ORIGINS or "*" in s.ALLOWED_ORIGINS:
        problems.append("ALLOWED_ORIGINS must list explicit origins")
    if s.AUTO_CREATE_SCHEMA:
        problems.append("AUTO_CREATE_SCHEMA must be off")
    if s.OTP_MODE == "dev":
        problems.append("OTP_MODE=dev is not permitted")
    elif s.OTP_MODE == "redis" and len(s.OTP_STORAGE_SECRET) < 16:
        problems.append("OTP_STORAGE_SECRET needs 16+ characters")
    if s.JWT_SECRET == "change_me_in_prod" or len(s.JWT_SECRET) < 16:
        problems.append("JWT_SECRET needs 16+ characters")
    if s.PAYMENTS_BASE_URL and s.PAYMENTS_INTERNAL_SECRET in ("", "dev_secret"):
        problems.append("PAYMENTS_INTERNAL_SECRET must be set")
    return problems


settings = Settings()

if not settings.DEV_MODE:
    _problems = production_problems(settings)
    if _problems:
        raise RuntimeError(f"refusing to start with ENV={settings.ENV}: " + "; ".join(_problems))
