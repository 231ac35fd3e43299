"""
Detail page visitor.

Opens a product page, expands the information accordions, snapshots the
rendered HTML and reads every field out of the snapshot. A field that can't be
read comes back empty; it never takes its siblings down with it.
"""
import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .catalog import is_login_url
from .errors import AuthenticationError, ExtractionError, NavigationTimeoutError
from .product_page_parser import (
    DIETARY_KEYWORDS_RE,
    clean_html_text,
    extract_section_html,
    first_gallery_image,
    parse_certifications,
    parse_dietary_tags,
    parse_more_section,
    parse_supplement_facts_table,
    parse_warnings,
    pick_label_images,
)
from .schema import ProductPageData

logger = logging.getLogger(__name__)

DISCLOSURE_LABELS = ["Description", "Warnings", "Dietary restrictions", "Certifications", "More", "Ingredients"]

# Alternate headings for the same section, in the order they are tried.
SECTION_ALIASES: Dict[str, Tuple[str, ...]] = {
    "description": ("Description",),
    "warnings": ("Warnings", "Warning", "Caution"),
    "dietary": ("Dietary restrictions",),
    "certifications": ("Certifications",),
    "more": ("More", "Supplement Facts", "Ingredients"),
}

HEADING_SELECTOR = '[data-e2e^="product-name-"], h1, .product-name'
DISCLOSURE_HEADINGS = "h2, h3, h4, h5, h6, button, summary"

NAVIGATION_TIMEOUT_MS = 20000
HEADING_TIMEOUT_MS = 10000
DISCLOSURE_WAIT_MS = 5000
TOGGLE_TIMEOUT_MS = 2000


def _section(html: str, key: str) -> Optional[str]:
    for label in SECTION_ALIASES[key]:
        found = extract_section_html(html, label)
        if found:
            return found
    return None


def _description(html: str) -> str:
    return clean_html_text(_section(html, "description"))


def _warnings(html: str) -> Optional[str]:
    section = _section(html, "warnings")
    if section:
        return clean_html_text(section) or None
    return parse_warnings(html)


def _dietary_restrictions(html: str):
    section = _section(html, "dietary")
    if not section:
        return []
    tags = parse_dietary_tags(section)
    if tags:
        return tags
    # plain-text section: "Gluten-free, Dairy-free, Vegan"
    text = clean_html_text(section)
    return list(dict.fromkeys(m.group(0) for m in DIETARY_KEYWORDS_RE.finditer(text)))


def _certifications(html: str):
    found = parse_certifications(_section(html, "certifications"))
    for cert in parse_certifications(html):
        if cert not in found:
            found.append(cert)
    return found


def _ingredients_text(html: str) -> Optional[str]:
    # free-text "Ingredients" panel, used only when there are no structured rows
    return clean_html_text(extract_section_html(html, "Ingredients")) or None


def _more(html: str) -> Dict[str, Any]:
    more = parse_more_section(_section(html, "more"))
    if not more["ingredients"]:
        more["ingredients"] = parse_supplement_facts_table(html)
    return more


def _run_field(name: str, fn: Callable[[], Any], default: Any) -> Any:
    try:
        return fn()
    except Exception as exc:
        logger.warning("[DETAIL] %s", ExtractionError(name, exc))
        return default


def extract_product_page(html: str, base_url: Optional[str] = None) -> ProductPageData:
    """Read every detail field from a rendered page snapshot."""
    more = _run_field("more", lambda: _more(html), {})
    front, back = _run_field("images", lambda: pick_label_images(html, base_url), (None, None))

    return ProductPageData(
        description=_run_field("description", lambda: _description(html), ""),
        warnings=_run_field("warnings", lambda: _warnings(html), None),
        dietary_restrictions=_run_field("dietary_restrictions", lambda: _dietary_restrictions(html), []),
        certifications=_run_field("certifications", lambda: _certifications(html), []),
        suggested_use=more.get("suggested_use"),
        serving_size=more.get("serving_size"),
        ingredients=more.get("ingredients") or [],
        ingredients_text=_run_field("ingredients_text", lambda: _ingredients_text(html), None),
        other_ingredients=more.get("other_ingredients") or [],
        front_image_url=front,
        back_image_url=back,
        gallery_image_url=_run_field("gallery_image", lambda: first_gallery_image(html, base_url), None),
        dietary_tags=_run_field("dietary_tags", lambda: parse_dietary_tags(html), []),
    )


class ProductPageVisitor:
    def __init__(self, page: Page):
        self.page = page

    async def _expand(self, label: str) -> None:
        heading = (
            self.page.locator(DISCLOSURE_HEADINGS)
            .filter(has_text=re.compile(rf"^\s*{re.escape(label)}\s*$", re.I))
            .first
        )
        toggle = heading.locator("xpath=ancestor-or-self::*[@aria-expanded][1]")
        try:
            state = await toggle.get_attribute("aria-expanded", timeout=TOGGLE_TIMEOUT_MS)
            if state == "false":
                await toggle.click(timeout=TOGGLE_TIMEOUT_MS)
                await self.page.wait_for_timeout(300)
                state = await toggle.get_attribute("aria-expanded", timeout=TOGGLE_TIMEOUT_MS)
            logger.debug("[DETAIL] '%s' aria-expanded=%s", label, state)
        except PlaywrightError as e:
            # Collapsed content is usually still in the DOM; the snapshot covers it.
            logger.debug("[DETAIL] Could not expand '%s': %s", label, e)

    async def expand_disclosures(self) -> None:
        try:
            await self.page.wait_for_selector("h5, summary, [aria-expanded]", timeout=DISCLOSURE_WAIT_MS)
        except PlaywrightTimeoutError:
            logger.warning("[DETAIL] No disclosure sections found on page")
            return
        for label in DISCLOSURE_LABELS:
            await self._expand(label)

    async def visit(self, url: str) -> ProductPageData:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(url) from exc

        if is_login_url(self.page.url):
            raise AuthenticationError(f"Redirected to login while opening {url}")

        try:
            await self.page.wait_for_selector(HEADING_SELECTOR, timeout=HEADING_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning("[DETAIL] Product heading not found on %s", url)

        await self.expand_disclosures()
        html = await self.page.content()
        return extract_product_page(html, base_url=self.page.url)
