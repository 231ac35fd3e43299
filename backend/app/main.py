import logging
import os

import uvicorn
from fastapi import FastAPI

from catalog_scrape.config import configure_logging
from catalog_scrape.schema import iso_timestamp

from .models import HealthResponse
from .routers import scrape

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI(title="Fullscript Scraper Service", version="1.0.0")


@app.get("/health", response_model=HealthResponse)
def healthcheck():
    return HealthResponse(timestamp=iso_timestamp())


app.include_router(scrape.router, tags=["scrape"])


def run():
    port = int(os.getenv("PORT", "3000"))
    logger.info("[SERVER] Fullscript Scraper Service listening on port %d", port)
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
