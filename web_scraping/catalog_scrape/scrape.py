"""
One scrape job, start to finish: create the job record, sign in, walk the
catalog, visit every detail page in turn, convert, persist.

Everything runs on one browser page, one step at a time. The site punishes
bursts, so there is deliberately no concurrency here.
"""
import argparse
import asyncio
import logging
import sys
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator

from .cache import write_json
from .catalog import CatalogWalker
from .config import Settings, configure_logging, get_settings
from .delays import random_delay
from .errors import AuthenticationError, PersistenceError
from .fetcher import BrowserSession
from .job_store import ImportJobStore
from .login import authenticate
from .normalizer import build_import, convert_products, merge_product_page
from .product_page import ProductPageVisitor
from .schema import DetailEnrichedItem, RawListingItem, ScrapeMode
from .supabase_client import get_supabase
from .validator import safe_validate_import

logger = logging.getLogger(__name__)

MAX_LIMIT = 500


class JobState(str, Enum):
    CREATED = "created"
    AUTHENTICATING = "authenticating"
    WALKING_CATALOG = "walking_catalog"
    VISITING_DETAILS = "visiting_details"
    CONVERTING = "converting"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


class ScrapeJobConfig(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    mode: ScrapeMode
    filter: Optional[str] = None
    limit: int = Field(ge=1, le=MAX_LIMIT)

    @model_validator(mode="after")
    def _filter_required(self):
        if self.mode != "full_catalog" and not self.filter:
            raise ValueError(f"Filter is required for mode: {self.mode}")
        return self


class ScrapeResult(BaseModel):
    success: bool
    import_id: Optional[str] = None
    total_scraped: int = 0
    products: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    state: JobState = JobState.CREATED
    envelope: Optional[Dict[str, Any]] = None


class CatalogScrapePipeline:
    def __init__(
        self,
        store: ImportJobStore,
        settings: Settings,
        session_factory=BrowserSession,
        authenticator=authenticate,
        walker_factory=CatalogWalker,
        visitor_factory=ProductPageVisitor,
        delay: Callable[[int, int], Awaitable[None]] = random_delay,
    ):
        self.store = store
        self.settings = settings
        self.session_factory = session_factory
        self.authenticator = authenticator
        self.walker_factory = walker_factory
        self.visitor_factory = visitor_factory
        self.delay = delay
        self.state = JobState.CREATED

    def _enter(self, state: JobState) -> None:
        logger.info("[JOB] %s -> %s", self.state.value, state.value)
        self.state = state

    def _report_progress(self, job_id: str, processed: int, successful: int) -> None:
        try:
            self.store.update_progress(job_id, processed, successful)
        except PersistenceError as e:
            logger.warning("[JOB] Progress update failed (continuing): %s", e)

    async def _visit_details(
        self,
        page,
        job_id: str,
        listing: List[RawListingItem],
        errors: List[str],
    ) -> Tuple[List[DetailEnrichedItem], int, int]:
        visitor = self.visitor_factory(page)
        items: List[DetailEnrichedItem] = []
        successful = failed = 0
        total = len(listing)

        for i, raw in enumerate(listing, start=1):
            item = DetailEnrichedItem.from_listing(raw)

            if not item.detail_url:
                logger.warning("[DETAIL] %d/%d has no detail URL, keeping listing data: %s", i, total, item.product_name)
                failed += 1
            else:
                logger.info("[DETAIL] %d/%d %s", i, total, item.product_name)
                try:
                    data = await asyncio.wait_for(
                        visitor.visit(item.detail_url), timeout=self.settings.detail_timeout_s
                    )
                    item = merge_product_page(item, data)
                    successful += 1
                except AuthenticationError:
                    raise
                except asyncio.TimeoutError:
                    failed += 1
                    msg = f"Detail page timed out after {self.settings.detail_timeout_s:g}s: {item.product_name}"
                    logger.warning("[DETAIL] %s", msg)
                    errors.append(msg)
                except Exception as e:
                    failed += 1
                    msg = f"Detail page failed for {item.product_name}: {type(e).__name__}: {e}"
                    logger.warning("[DETAIL] %s", msg)
                    errors.append(msg)

                if i < total:
                    await self.delay(2000, 3000)

            items.append(item)
            self._report_progress(job_id, i, successful)

        return items, successful, failed

    async def run(self, config: ScrapeJobConfig) -> ScrapeResult:
        self.state = JobState.CREATED
        errors: List[str] = []
        job_id: Optional[str] = None
        logger.info("[JOB] Starting scrape mode=%s filter=%s limit=%d", config.mode, config.filter, config.limit)

        try:
            job_id = self.store.create_job(config.mode, config.filter)

            async with self.session_factory(self.settings) as page:
                self._enter(JobState.AUTHENTICATING)
                base_url = await self.authenticator(page, config.email, config.password, self.settings, self.delay)

                self._enter(JobState.WALKING_CATALOG)
                walker = self.walker_factory(page, base_url, delay=self.delay)
                listing = await walker.walk(config.mode, config.filter, config.limit)
                logger.info("[JOB] Catalog walk returned %d items", len(listing))

                self._enter(JobState.VISITING_DETAILS)
                items, successful, failed = await self._visit_details(page, job_id, listing, errors)

            self._enter(JobState.CONVERTING)
            conversion = convert_products(items, base_url)
            errors.extend(conversion.errors)
            envelope = build_import(
                conversion.products, config.mode, config.filter, self.settings.confidence_threshold
            )
            check = safe_validate_import(envelope)
            if not check.success:
                logger.warning("[CONVERT] Import envelope has %d validation issue(s)", len(check.errors))

            self._enter(JobState.PERSISTING)
            self.store.complete_job(job_id, envelope, successful, failed)

            self._enter(JobState.COMPLETED)
            logger.info("[JOB] Done: %d products, %d non-fatal errors", len(conversion.products), len(errors))
            return ScrapeResult(
                success=True,
                import_id=job_id,
                total_scraped=len(conversion.products),
                products=conversion.products,
                errors=errors,
                state=self.state,
                envelope=envelope,
            )

        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.exception("[JOB] Fatal error in state %s: %s", self.state.value, message)
            errors.append(message)
            self.state = JobState.FAILED

            if job_id is not None:
                try:
                    self.store.fail_job(job_id, message)
                except PersistenceError as e:
                    logger.error("[JOB] Could not record failure for %s: %s", job_id, e)

            return ScrapeResult(success=False, import_id=job_id, errors=errors, state=self.state)


def build_pipeline(settings: Optional[Settings] = None) -> CatalogScrapePipeline:
    settings = settings or get_settings()
    store = ImportJobStore(get_supabase(), table=settings.imports_table)
    return CatalogScrapePipeline(store, settings)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="catalog-scrape", description="Scrape the Fullscript supplement catalog.")
    parser.add_argument("--mode", choices=["full_catalog", "category", "brand", "search"], default="full_catalog")
    parser.add_argument("--filter", default=None, help="category, brand or search text (required unless full_catalog)")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--output", default=None, help="also write the import envelope to this JSON file")
    return parser.parse_args(argv)


def cli(argv=None) -> None:
    #   catalog-scrape --mode brand --filter Thorne --limit 5
    #   catalog-scrape --mode search --filter "vitamin d" --output data/clean/vitamin_d.json
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    if not settings.email or not settings.password:
        sys.exit("FULLSCRIPT_EMAIL and FULLSCRIPT_PASSWORD must be set")

    try:
        config = ScrapeJobConfig(
            email=settings.email,
            password=settings.password,
            mode=args.mode,
            filter=args.filter,
            limit=args.limit,
        )
    except ValidationError as e:
        sys.exit(f"Invalid job configuration: {e}")

    result = asyncio.run(build_pipeline(settings).run(config))

    if args.output and result.envelope is not None:
        path = write_json(args.output, result.envelope)
        logger.info("[JOB] Wrote import envelope to %s", path)

    print(f"[DONE] success={result.success} import_id={result.import_id} products={result.total_scraped}")
    for err in result.errors:
        print(f"  - {err}")
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    cli()
