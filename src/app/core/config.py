"""
Application settings
"""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings


_FILE_PATH = Path(__file__).resolve()


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """Collect .env candidates starting from the closest directory"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """Load every discovered .env file without overriding the process env"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()

class Settings(BaseSettings):
    """Application settings"""

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # Supabase
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: str

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    # Read per request so a missing secret fails the webhook closed (500)
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_API_BASE_URL: str = "https://api.stripe.com"
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    # Billing bookkeeping
    INVOICE_STORAGE_BUCKET: str = "billing"
    COMMISSION_HOLD_DAYS: int = 14
    INVOICE_SYNC_ENABLED: bool = False
    INVOICE_SYNC_MONTHS: int = 18

    # Background webhook processing
    WEBHOOK_TASK_MAX_ATTEMPTS: int = 3
    WEBHOOK_TASK_RETRY_DELAY: float = 2.0

    # Logging
    LOG_LEVEL: str = "INFO"

    @validator('SUPABASE_URL')
    def validate_supabase_url(cls, v):
        if not v:
            raise ValueError('SUPABASE_URL is required')
        return v

    @validator('SUPABASE_SERVICE_ROLE_KEY')
    def validate_supabase_service_role_key(cls, v):
        if not v:
            raise ValueError('SUPABASE_SERVICE_ROLE_KEY is required')
        return v

    @validator('COMMISSION_HOLD_DAYS')
    def validate_hold_days(cls, v):
        if v < 0:
            raise ValueError('COMMISSION_HOLD_DAYS must not be negative')
        return v

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Build the settings on first use so importing modules never needs a full env"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
