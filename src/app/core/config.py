"""
Application settings
"""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings


_FILE_PATH = Path(__file__).resolve()

NON_PRODUCTION_ENVIRONMENTS = frozenset({"local", "development", "test"})


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """Collect .env candidates, nearest directory first"""

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
    """Load every discovered .env file without overriding the process environment"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()

class Settings(BaseSettings):
    """Application settings"""

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Deployment environment; webhook verification can only be waived outside production
    ENVIRONMENT: str = "production"
    WEBHOOK_VERIFY_BYPASS: bool = False

    # Supabase
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # Hotmart
    HOTMART_WEBHOOK_SECRET: Optional[str] = None
    HOTMART_CLIENT_ID: Optional[str] = None
    HOTMART_CLIENT_SECRET: Optional[str] = None
    HOTMART_BASIC_TOKEN: Optional[str] = None
    HOTMART_API_URL: str = "https://developers.hotmart.com"
    HOTMART_AUTH_URL: str = "https://api-sec-vlc.hotmart.com/security/oauth/token"

    # Green
    GREEN_WEBHOOK_SECRET: Optional[str] = None
    GREEN_API_KEY: Optional[str] = None
    GREEN_API_URL: str = "https://api.green.com.br/v1"

    # Admin API
    ADMIN_API_TOKEN: Optional[str] = None

    # Entitlements
    PROFESSIONAL_ARTICLES_LIMIT: int = 5
    FREE_ARTICLES_LIMIT: Optional[int] = None
    PER_ARTICLE_DEFAULT_CREDITS: int = 1

    @validator('ENVIRONMENT')
    def normalize_environment(cls, v):
        return (v or "production").strip().lower()

    @validator('PROFESSIONAL_ARTICLES_LIMIT', 'PER_ARTICLE_DEFAULT_CREDITS')
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError('must be a positive integer')
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT not in NON_PRODUCTION_ENVIRONMENTS

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"

# Global settings instance
settings = Settings()
