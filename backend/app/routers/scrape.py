import logging
import os

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from catalog_scrape.scrape import MAX_LIMIT, CatalogScrapePipeline, ScrapeJobConfig, build_pipeline

from ..models import ScrapeRequest, ScrapeResponse

logger = logging.getLogger(__name__)

router = APIRouter()

MODES = ("full_catalog", "category", "brand", "search")


def get_pipeline() -> CatalogScrapePipeline:
    return build_pipeline()


def _bad_request(error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": error, "message": message})


def _job_config(payload: ScrapeRequest) -> ScrapeJobConfig:
    creds = payload.credentials
    if creds is None or not creds.email or not creds.password:
        raise _bad_request("Missing credentials", "Email and password are required")
    if not payload.mode:
        raise _bad_request("Missing mode", "Scraper mode is required (full_catalog, category, brand, search)")
    if payload.mode not in MODES:
        raise _bad_request("Invalid mode", f"Unknown scraper mode: {payload.mode}")
    if not payload.limit or payload.limit < 1 or payload.limit > MAX_LIMIT:
        raise _bad_request("Invalid limit", f"Limit must be between 1 and {MAX_LIMIT}")
    if payload.mode != "full_catalog" and not payload.filter:
        raise _bad_request("Missing filter", f"Filter is required for mode: {payload.mode}")

    return ScrapeJobConfig(
        email=creds.email,
        password=creds.password,
        mode=payload.mode,
        filter=payload.filter or None,
        limit=payload.limit,
    )


@router.post("/scrape", response_model=ScrapeResponse)
async def scrape(payload: ScrapeRequest, pipeline: CatalogScrapePipeline = Depends(get_pipeline)):
    """
    Run one scrape job and wait for it to finish. This can take several
    minutes for large limits.
    """
    config = _job_config(payload)
    logger.info("[API] Starting scraper mode=%s filter=%s limit=%d", config.mode, config.filter, config.limit)

    result = await pipeline.run(config)
    logger.info(
        "[API] Scraper finished success=%s total=%d import_id=%s",
        result.success, result.total_scraped, result.import_id,
    )

    if result.success:
        return ScrapeResponse(
            success=True,
            import_id=result.import_id,
            total_products=result.total_scraped,
            message="Scraping completed successfully",
            errors=result.errors,
        )

    body = ScrapeResponse(
        success=False,
        import_id=result.import_id,
        total_products=result.total_scraped,
        errors=result.errors,
        message="Scraping failed",
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())


@router.get("/test")
def test_endpoint():
    return {
        "message": "Fullscript Scraper Service is running",
        "endpoints": {
            "health": "GET /health",
            "scrape": "POST /scrape",
            "test": "GET /test",
        },
        "environment": {
            "appEnv": os.getenv("APP_ENV", "local"),
            "hasSupabaseUrl": bool(os.getenv("SUPABASE_URL")),
            "hasSupabaseKey": bool(os.getenv("SUPABASE_SERVICE_KEY")),
        },
    }
