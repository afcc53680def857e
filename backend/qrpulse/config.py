import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = "sqlite:///./dev.db"
    redis_url: Optional[str] = None
    redis_timeout_seconds: float = 0.5
    geoip_url: str = "http://ip-api.com/json/{ip}"
    geoip_timeout_seconds: float = 2.0
    geoip_enabled: bool = True
    base_url: Optional[str] = None
    redirect_shortcode_limit: int = 1000
    redirect_ip_limit: int = 500
    redirect_window_seconds: int = 3600
    secret_key: str = "replace-this"
    admin_password: Optional[str] = None
    access_token_expire_minutes: int = 1440
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and a .env file if present)."""
        load_dotenv()

        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            if os.getenv("VERCEL"):
                # On Vercel, PostgreSQL is required
                raise ValueError("DATABASE_URL is missing on Vercel. Please set it in the Vercel project settings.")
            database_url = cls.database_url

        return cls(
            database_url=database_url,
            redis_url=os.getenv("REDIS_URL") or None,
            redis_timeout_seconds=float(os.getenv("REDIS_TIMEOUT_SECONDS", cls.redis_timeout_seconds)),
            geoip_url=os.getenv("GEOIP_URL", cls.geoip_url),
            geoip_timeout_seconds=float(os.getenv("GEOIP_TIMEOUT_SECONDS", cls.geoip_timeout_seconds)),
            geoip_enabled=_env_bool("GEOIP_ENABLED", True),
            base_url=(os.getenv("BASE_URL") or "").rstrip("/") or None,
            redirect_shortcode_limit=int(os.getenv("REDIRECT_SHORTCODE_LIMIT", cls.redirect_shortcode_limit)),
            redirect_ip_limit=int(os.getenv("REDIRECT_IP_LIMIT", cls.redirect_ip_limit)),
            redirect_window_seconds=int(os.getenv("REDIRECT_WINDOW_SECONDS", cls.redirect_window_seconds)),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", cls.access_token_expire_minutes)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
