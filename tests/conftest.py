"""
Shared fixtures: settings without a .env, canned catalog/product markup, and
a fake Playwright page for the catalog walker.
"""
from typing import List, Optional

import pytest
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from catalog_scrape.config import Settings

BASE_URL = "https://us.fullscript.com"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SUPABASE_URL="https://example.supabase.co",
        SUPABASE_SERVICE_KEY="service-key",
        SCRAPER_DEBUG_DIR=str(tmp_path / "debug"),
    )


async def no_delay(*args, **kwargs):
    return None


# ----------------------------------------------------------------------------
# catalog markup
# ----------------------------------------------------------------------------

def product_card(i: int, brand: str = "Thorne") -> str:
    return (
        '<span data-e2e="patient-product-card">'
        f'<a data-testid="router-link" data-e2e="go-to-pdp" href="/u/catalog/product/p{i}">'
        f'<img src="https://assets.fullscript.io/products/p{i}.jpg"></a>'
        f'<p title="Product {i}" class="css-1m1es5o">Product {i}</p>'
        f'<p title="{brand}" class="css-1lfap54">{brand}</p>'
        '<button role="combobox"><span>90 capsules</span></button>'
        "</span>"
    )


def listing_html(count: int, brand: str = "Thorne") -> str:
    # a promo tile shares the card marker but has no link/image: must be ignored
    promo = '<span data-e2e="patient-product-card"><p>Free shipping over $50</p></span>'
    cards = "".join(product_card(i, brand) for i in range(1, count + 1))
    return f'<html><body><div data-testid="aviary-columns">{promo}{cards}</div></body></html>'


class FakeButton:
    def __init__(self, page: "FakeCatalogPage", disabled: bool = False, fail: bool = False):
        self.page = page
        self.disabled = disabled
        self.fail = fail

    async def evaluate(self, script):
        return self.disabled

    async def click(self, **kwargs):
        if self.fail:
            raise PlaywrightError("Element is not attached to the DOM")
        self.page.clicks += 1


class FakeCatalogPage:
    """
    Serves `rounds[n]` after n "Load more" clicks. The button disappears once
    the last round is showing, unless `always_more` keeps it around.
    """

    def __init__(
        self,
        rounds: List[str],
        redirect_to: Optional[str] = None,
        always_more: bool = False,
        button_disabled: bool = False,
        button_fails: bool = False,
        goto_timeout: bool = False,
    ):
        self.rounds = rounds
        self.redirect_to = redirect_to
        self.always_more = always_more
        self.button_disabled = button_disabled
        self.button_fails = button_fails
        self.goto_timeout = goto_timeout
        self.clicks = 0
        self.url = "about:blank"
        self.visited: List[str] = []

    def _current(self) -> str:
        return self.rounds[min(self.clicks, len(self.rounds) - 1)]

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        if self.goto_timeout:
            raise PlaywrightTimeoutError("Timeout 30000ms exceeded.")
        self.url = self.redirect_to or url

    async def wait_for_selector(self, selector, timeout=None):
        if not BeautifulSoup(self._current(), "lxml").select(selector):
            raise PlaywrightTimeoutError(f"waiting for {selector} failed")

    async def content(self):
        return self._current()

    async def query_selector(self, selector):
        if self.always_more or self.clicks < len(self.rounds) - 1:
            return FakeButton(self, disabled=self.button_disabled, fail=self.button_fails)
        return None

    async def wait_for_load_state(self, state=None, timeout=None):
        return None


# ----------------------------------------------------------------------------
# product page markup
# ----------------------------------------------------------------------------

MORE_SECTION = (
    "<p><strong>Suggested Use:</strong> Take 1 capsule daily with food.</p>"
    "<p><strong>Serving Size:</strong> 1 Capsule</p>"
    "<p><strong>Amount Per Serving</strong><br>"
    "<strong>Vitamin D3 (as cholecalciferol)</strong> ... 25 mcg<br>"
    "<strong>Proprietary Blend</strong></p>"
    "<p><strong>Other Ingredients:</strong> cellulose (water, glycerin), silica</p>"
)

PRODUCT_PAGE = f"""
<html><body>
<h1 data-e2e="product-name-d3">Vitamin D3 1000 IU</h1>
<div class="gallery">
  <img alt="Vitamin D3 front label" src="https://assets.fullscript.io/d3-front.jpg">
  <img alt="Vitamin D3 back label" src="/images/d3-back.jpg">
  <img alt="NSF Certified for Sport" src="https://assets.fullscript.io/nsf.png">
  <img src="data:image/png;base64,AAAA">
</div>
<div class="badges"><span class="badge">Gluten-Free</span><span class="badge">Vegan</span></div>
<div>
  <button aria-expanded="false" aria-controls="desc-panel"><h5>Description</h5></button>
  <div id="desc-panel"><p>Supports <b>bone</b> health.</p></div>
</div>
<div>
  <button aria-expanded="true"><h5>Warnings</h5></button>
  <div><p>Keep out of reach of children.</p></div>
</div>
<div>
  <button aria-expanded="false" aria-controls="diet-panel"><h5>Dietary restrictions</h5></button>
  <div id="diet-panel"><ul><li>Dairy-free</li><li>Soy-free</li></ul></div>
</div>
<div>
  <button aria-expanded="false" aria-controls="cert-panel"><h5>Certifications</h5></button>
  <div id="cert-panel"><ul><li>GMP Certified</li></ul></div>
</div>
<div>
  <button aria-expanded="false" aria-controls="more-panel"><h5>More</h5></button>
  <div id="more-panel">{MORE_SECTION}</div>
</div>
</body></html>
"""


@pytest.fixture
def product_page_html():
    return PRODUCT_PAGE
