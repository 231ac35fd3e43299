import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, ValidationError


class Settings(BaseModel):
    supabase_url: HttpUrl = Field(alias="SUPABASE_URL")
    supabase_key: str = Field(alias="SUPABASE_SERVICE_KEY")
    env: str = Field(default="local", alias="APP_ENV")

    # Target site
    login_url: str = Field(default="https://fullscript.com/login", alias="FULLSCRIPT_LOGIN_URL")
    expected_host: str = Field(default="fullscript.com", alias="FULLSCRIPT_HOST")
    email: Optional[str] = Field(default=None, alias="FULLSCRIPT_EMAIL")
    password: Optional[str] = Field(default=None, alias="FULLSCRIPT_PASSWORD")

    # Job behaviour
    imports_table: str = Field(default="fullscript_imports", alias="IMPORTS_TABLE")
    headless: bool = Field(default=True, alias="SCRAPER_HEADLESS")
    detail_timeout_s: float = Field(default=45.0, gt=0, alias="DETAIL_PAGE_TIMEOUT_S")
    confidence_threshold: float = Field(default=0.8, ge=0, le=1, alias="CONFIDENCE_THRESHOLD")
    debug_dir: str = Field(default="data/debug", alias="SCRAPER_DEBUG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def _load_dotenv():
    # Load from repo root if present, otherwise rely on environment variables.
    root_env = Path(__file__).resolve().parents[2] / ".env"
    if root_env.exists():
        load_dotenv(root_env)
    else:
        load_dotenv()


@lru_cache()
def get_settings() -> Settings:
    _load_dotenv()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        missing = [e["loc"][0] for e in exc.errors() if e["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid scraper configuration: {exc}") from exc
        detail = f"Missing required environment variables: {', '.join(missing)}"
        raise RuntimeError(detail) from exc


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
