"""
Catalog walker: opens the filtered listing, reads product cards round by
round and clicks "Load more" until the target count is reached or the
listing runs out.
"""
import logging
from typing import Awaitable, Callable, List, Optional
from urllib.parse import quote, urljoin, urlparse

import soupsieve as sv
from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .delays import random_delay
from .errors import AuthenticationError, NavigationTimeoutError
from .schema import UNKNOWN_BRAND, UNKNOWN_PRODUCT, RawListingItem

logger = logging.getLogger(__name__)

# Most specific first. Class-hash selectors break on every redesign, so the
# structural ones lead.
CARD_SELECTORS = [
    'span[data-e2e="patient-product-card"]',
    'div[data-testid="aviary-columns"] > div',
    'a[data-testid="router-link"][data-e2e="go-to-pdp"]',
    'div[class*="product"]',
    "article",
]

NAME_SELECTORS = ['p[class*="1m1es5o"]', "p[title]", '[data-testid="name-wrapper"] p', "h3 a", "h3"]
BRAND_SELECTORS = ['p[class*="1lfap54"]', '[data-testid="name-wrapper"] + p', 'p[title]:not([class*="1m1es5o"])']
LINK_SELECTORS = ['a[data-e2e="go-to-pdp"]', 'a[href*="/catalog/product"]', 'a[data-testid="router-link"]']
IMAGE_SELECTORS = ['img[src*="fullscript"]', 'img[src*="assets"]', "img"]
PACKAGE_SELECTORS = [
    'button[role="combobox"] span',
    'button[role="combobox"] p',
    '[id^="radix"] p',
    'p[class*="jl0sy5"]',
]

# A card is a product only if it links to a detail page, or shows an image and a name.
_LINK_PROBE = 'a[href*="/catalog/product"], a[data-testid="router-link"]'
_IMAGE_PROBE = 'img[src*="fullscript"], img[src*="assets"]'
_NAME_PROBE = 'p[title], h3, [data-testid="name-wrapper"], p[class*="1m1es5o"]'

LOAD_MORE_SELECTOR = 'button:has-text("Load more")'
CARD_WAIT_MS = 5000
MAX_STALLED_ROUNDS = 2

_FILTER_PARAMS = {"category": "category", "brand": "brand"}


def build_catalog_url(base_url: str, mode: str, filter_value: Optional[str] = None) -> str:
    """
    >>> build_catalog_url("https://us.fullscript.com", "search", "vitamin d")
    'https://us.fullscript.com/u/catalog?query="vitamin%20d"'
    """
    url = f"{base_url.rstrip('/')}/u/catalog"
    if not filter_value or mode == "full_catalog":
        return url
    value = quote(filter_value, safe="")
    if mode == "search":
        # quoted for an exact-phrase match, same as the site's own search box
        return f'{url}?query="{value}"'
    param = _FILTER_PARAMS.get(mode)
    return f"{url}?{param}={value}" if param else url


def is_login_url(url: Optional[str]) -> bool:
    return "/login" in urlparse(url or "").path


# ----------------------------------------------------------------------------
# card parsing (pure)
# ----------------------------------------------------------------------------

def _select_one(card: Tag, selector: str) -> Optional[Tag]:
    if sv.match(selector, card):
        return card
    return card.select_one(selector)


def _first(card: Tag, selectors: List[str], exclude: Optional[Tag] = None) -> Optional[Tag]:
    for selector in selectors:
        candidates = ([card] if sv.match(selector, card) else []) + card.select(selector)
        for el in candidates:
            if el is not exclude:
                return el
    return None


def _text(el: Optional[Tag]) -> Optional[str]:
    if el is None:
        return None
    return el.get_text(" ", strip=True) or (el.get("title") or "").strip() or None


def _is_product_card(card: Tag) -> bool:
    if _select_one(card, _LINK_PROBE) is not None:
        return True
    return _select_one(card, _IMAGE_PROBE) is not None and _select_one(card, _NAME_PROBE) is not None


def parse_card(card: Tag, base_url: Optional[str] = None) -> RawListingItem:
    name_el = _first(card, NAME_SELECTORS)
    brand_el = _first(card, BRAND_SELECTORS, exclude=name_el)
    link_el = _first(card, LINK_SELECTORS)
    img_el = _first(card, IMAGE_SELECTORS)
    package_el = _first(card, PACKAGE_SELECTORS)

    href = link_el.get("href") if link_el is not None else None
    src = (img_el.get("src") or img_el.get("data-src")) if img_el is not None else None

    return RawListingItem(
        brand=_text(brand_el) or UNKNOWN_BRAND,
        product_name=_text(name_el) or UNKNOWN_PRODUCT,
        detail_url=urljoin(base_url, href) if href and base_url else href,
        image_url=urljoin(base_url, src) if src and base_url else src,
        package_size=_text(package_el),
    )


def parse_listing_html(html: str, base_url: Optional[str] = None) -> List[RawListingItem]:
    """
    Cards in render order, using the first selector whose candidates include
    real product cards. Decorative matches (no link, or no image+name) are dropped.
    """
    soup = BeautifulSoup(html or "", "lxml")
    for selector in CARD_SELECTORS:
        cards = [c for c in soup.select(selector) if _is_product_card(c)]
        if not cards:
            continue
        logger.debug("[CATALOG] Using selector %s (%d cards)", selector, len(cards))
        items = []
        for card in cards:
            try:
                items.append(parse_card(card, base_url))
            except Exception as e:
                logger.warning("[CATALOG] Skipping unreadable card: %s: %s", type(e).__name__, e)
        return items
    return []


# ----------------------------------------------------------------------------
# browser side
# ----------------------------------------------------------------------------

class CatalogWalker:
    def __init__(
        self,
        page: Page,
        base_url: str,
        delay: Callable[[int, int], Awaitable[None]] = random_delay,
    ):
        self.page = page
        self.base_url = base_url
        self.delay = delay

    async def open(self, mode: str, filter_value: Optional[str]) -> str:
        url = build_catalog_url(self.base_url, mode, filter_value)
        logger.info("[CATALOG] Navigating to %s", url)
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(url, "catalog listing did not load") from exc
        await self.delay(2000, 3000)

        if is_login_url(self.page.url):
            raise AuthenticationError("Catalog navigation redirected back to login")
        return url

    async def _wait_for_cards(self) -> Optional[str]:
        for selector in CARD_SELECTORS:
            try:
                await self.page.wait_for_selector(selector, timeout=CARD_WAIT_MS)
                return selector
            except PlaywrightTimeoutError:
                continue
        return None

    async def read_round(self) -> List[RawListingItem]:
        if is_login_url(self.page.url):
            raise AuthenticationError("Session lost while reading the catalog")

        if await self._wait_for_cards() is None:
            logger.warning("[CATALOG] No product cards rendered this round")
            return []
        html = await self.page.content()
        return parse_listing_html(html, self.base_url)

    async def reveal_more(self) -> bool:
        """Click "Load more". False means the listing is exhausted."""
        try:
            button = await self.page.query_selector(LOAD_MORE_SELECTOR)
            if button is None:
                logger.info("[CATALOG] No 'Load more' button - all products loaded")
                return False

            disabled = await button.evaluate(
                "el => el.hasAttribute('disabled') || el.classList.contains('disabled')"
                " || el.getAttribute('aria-disabled') === 'true'"
            )
            if disabled:
                logger.info("[CATALOG] 'Load more' is disabled - all products loaded")
                return False

            await button.click()
        except PlaywrightError as e:
            logger.warning("[CATALOG] Could not load more products: %s", e)
            return False

        await self.delay(2000, 4000)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=5000)
        except PlaywrightTimeoutError:
            logger.debug("[CATALOG] Network idle timeout after 'Load more' (expected with lazy loading)")
        return True

    async def walk(self, mode: str, filter_value: Optional[str], limit: int) -> List[RawListingItem]:
        await self.open(mode, filter_value)

        items: List[RawListingItem] = []
        seen = set()
        stalled = 0
        round_no = 0

        while len(items) < limit:
            round_no += 1
            added = 0
            for item in await self.read_round():
                key = item.dedupe_key()
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)
                added += 1
                if len(items) >= limit:
                    break

            logger.info("[CATALOG] Round %d: +%d (total %d/%d)", round_no, added, len(items), limit)
            if len(items) >= limit:
                break

            if round_no > 1 and added == 0:
                stalled += 1
                if stalled >= MAX_STALLED_ROUNDS:
                    logger.warning("[CATALOG] Listing stopped growing after %d rounds", round_no)
                    break
            else:
                stalled = 0

            if not await self.reveal_more():
                break

        return items[:limit]
