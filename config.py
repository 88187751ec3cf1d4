"""
Runtime configuration for the Auto Pro backend.

Values come from the environment (a local ``.env`` file is loaded first) and
are frozen into a single ``Settings`` object at startup. Routes receive it via
the ``get_settings`` dependency so tests can swap it out.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")

MB = 1024 * 1024


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    store_backend: str = "mongo"

    database_url: str = ""
    database_name: str = "autopro"
    supabase_url: str = ""
    supabase_key: str = ""

    storage_bucket: str = "vehicle-images"
    max_upload_bytes: int = 10 * MB
    bucket_file_size_limit: int = 50 * MB
    verify_uploads: bool = True
    placeholder_image: str = "/hero.jpg"

    email_functions_url: str = ""

    shop_name: str = "AUTO PRO REPAIRS & SALES"
    shop_email: str = "service@autoprorepairs.com"
    shop_phone: str = "(352) 933-5181"
    shop_address: str = "806 Hood Ave, Leesburg, FL 34748"
    site_url: str = "https://autoprorepairs.com"

    demo_admin_email: str = "admin@autopro.com"
    demo_admin_password: str = "autopro2025"
    session_ttl_hours: int = 24 * 7

    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def functions_url(self) -> str:
        if self.email_functions_url:
            return self.email_functions_url.rstrip("/")
        if self.supabase_url:
            return f"{self.supabase_url.rstrip('/')}/functions/v1"
        return ""


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        environment=os.getenv("APP_ENV", "development"),
        store_backend=os.getenv("STORE_BACKEND", "mongo").lower(),
        database_url=os.getenv("DATABASE_URL", ""),
        database_name=os.getenv("DATABASE_NAME", "autopro"),
        supabase_url=os.getenv("SUPABASE_URL", ""),
        supabase_key=os.getenv("SUPABASE_KEY", ""),
        storage_bucket=os.getenv("STORAGE_BUCKET", "vehicle-images"),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * MB),
        bucket_file_size_limit=_env_int("BUCKET_FILE_SIZE_LIMIT", 50 * MB),
        verify_uploads=_env_bool("VERIFY_UPLOADS", True),
        placeholder_image=os.getenv("PLACEHOLDER_IMAGE", "/hero.jpg"),
        email_functions_url=os.getenv("EMAIL_FUNCTIONS_URL", ""),
        shop_name=os.getenv("SHOP_NAME", "AUTO PRO REPAIRS & SALES"),
        shop_email=os.getenv("SHOP_EMAIL", "service@autoprorepairs.com"),
        shop_phone=os.getenv("SHOP_PHONE", "(352) 933-5181"),
        shop_address=os.getenv("SHOP_ADDRESS", "806 Hood Ave, Leesburg, FL 34748"),
        site_url=os.getenv("SITE_URL", "https://autoprorepairs.com").rstrip("/"),
        demo_admin_email=os.getenv("DEMO_ADMIN_EMAIL", "admin@autopro.com"),
        demo_admin_password=os.getenv("DEMO_ADMIN_PASSWORD", "autopro2025"),
        session_ttl_hours=_env_int("SESSION_TTL_HOURS", 24 * 7),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        port=_env_int("PORT", 8000),
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
