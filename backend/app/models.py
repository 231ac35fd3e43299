from typing import List, Optional

from pydantic import BaseModel, field_validator


# --- POST /scrape ---
# Everything is optional here so that missing fields get the service's own
# 400 messages instead of FastAPI's generic 422.
class Credentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ScrapeRequest(BaseModel):
    credentials: Optional[Credentials] = None
    mode: Optional[str] = None
    filter: Optional[str] = None
    limit: Optional[int] = None

    @field_validator("limit", mode="before")
    @classmethod
    def _lenient_limit(cls, value):
        # anything that is not a whole number becomes None -> "Invalid limit"
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return int(number) if number.is_integer() else None


class ScrapeResponse(BaseModel):
    success: bool
    import_id: Optional[str] = None
    total_products: int = 0
    message: str
    errors: Optional[List[str]] = None


# --- GET /health ---
class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "fullscript-scraper"
    version: str = "1.0.0"
    timestamp: str
