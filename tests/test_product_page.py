"""
Tests for detail page extraction and the visitor's navigation handling.
"""
import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from catalog_scrape import product_page
from catalog_scrape.errors import AuthenticationError, NavigationTimeoutError
from catalog_scrape.normalizer import merge_product_page, to_product_record
from catalog_scrape.product_page import ProductPageVisitor, extract_product_page
from catalog_scrape.schema import DetailEnrichedItem, Ingredient

from conftest import PRODUCT_PAGE

PAGE_URL = "https://us.fullscript.com/u/catalog/product/d3"


class TestExtractProductPage:
    def test_all_fields(self):
        data = extract_product_page(PRODUCT_PAGE, PAGE_URL)

        assert data.description == "Supports bone health."
        assert data.warnings == "Keep out of reach of children."
        assert data.dietary_restrictions == ["Dairy-free", "Soy-free"]
        assert data.certifications == ["GMP Certified", "NSF Certified for Sport"]
        assert data.suggested_use == "Take 1 capsule daily with food."
        assert data.serving_size == "1 Capsule"
        assert data.ingredients == [
            Ingredient(name="Vitamin D3 (as cholecalciferol)", amount=25.0, unit="mcg", equivalent="cholecalciferol"),
            Ingredient(name="Proprietary Blend"),
        ]
        assert data.other_ingredients == ["cellulose (water, glycerin)", "silica"]
        assert data.front_image_url == "https://assets.fullscript.io/d3-front.jpg"
        assert data.back_image_url == "https://us.fullscript.com/images/d3-back.jpg"

    def test_bare_page_gives_empty_record(self):
        data = extract_product_page("<html><body><h1>Zinc</h1></body></html>")
        assert data.description == ""
        assert data.ingredients == []
        assert data.certifications == []
        assert data.front_image_url is None

    def test_header_chrome_never_replaces_listing_image(self):
        html = (
            "<html><body><header>"
            '<a href="/u/catalog"><img src="/icons/arrow-back.svg" alt="Back"></a>'
            '<img src="/logo.png" alt="Fullscript"></header>'
            '<div class="gallery"><img alt="Zinc" src="https://assets.fullscript.io/zinc-2.jpg"></div>'
            "</body></html>"
        )
        data = extract_product_page(html, PAGE_URL)
        listing = DetailEnrichedItem(
            brand="Thorne", product_name="Zinc", image_url="https://assets.fullscript.io/zinc.jpg"
        )

        merged = merge_product_page(listing, data)

        assert (data.front_image_url, data.back_image_url) == (None, None)
        assert merged.image_url == "https://assets.fullscript.io/zinc.jpg"
        assert merged.back_image_url is None

    def test_free_text_ingredients_panel_reaches_the_record(self):
        html = (
            "<html><body><h1>Immune Daily</h1>"
            '<button aria-expanded="false" aria-controls="ing"><h5>Ingredients</h5></button>'
            '<div id="ing"><p>Vitamin C 500mg, Zinc (as picolinate) 15mg</p></div>'
            "</body></html>"
        )
        data = extract_product_page(html, PAGE_URL)
        assert data.ingredients == []
        assert data.ingredients_text == "Vitamin C 500mg, Zinc (as picolinate) 15mg"

        item = merge_product_page(DetailEnrichedItem(brand="Thorne", product_name="Immune Daily"), data)
        record = to_product_record(item, "https://us.fullscript.com")

        assert [(i["name"], i["amount"], i["unit"]) for i in record["ingredients"]] == [
            ("Vitamin C", 500.0, "mg"),
            ("Zinc", 15.0, "mg"),
        ]

    def test_broken_field_does_not_take_down_the_others(self, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("selector engine crashed")

        monkeypatch.setattr(product_page, "pick_label_images", explode)

        data = extract_product_page(PRODUCT_PAGE, PAGE_URL)

        assert data.front_image_url is None and data.back_image_url is None
        assert data.description == "Supports bone health."
        assert data.serving_size == "1 Capsule"


class FakeToggle:
    def __init__(self, page, label):
        self.page = page
        self.label = label

    async def get_attribute(self, name, timeout=None):
        if self.label not in self.page.toggles:
            raise PlaywrightError("Timeout 2000ms exceeded.")
        return self.page.toggles[self.label]

    async def click(self, timeout=None):
        self.page.toggles[self.label] = "true"


class FakeLocator:
    def __init__(self, page, label=None):
        self.page = page
        self.label = label

    def filter(self, has_text=None):
        for label in self.page.toggles:
            if has_text.search(label):
                return FakeLocator(self.page, label)
        return FakeLocator(self.page, None)

    @property
    def first(self):
        return self

    def locator(self, selector):
        return FakeToggle(self.page, self.label)


class FakeProductPage:
    def __init__(self, html=PRODUCT_PAGE, redirect_to=None, goto_timeout=False):
        self.html = html
        self.redirect_to = redirect_to
        self.goto_timeout = goto_timeout
        self.url = "about:blank"
        self.toggles = {"Description": "false", "Warnings": "true", "More": "false"}

    async def goto(self, url, **kwargs):
        if self.goto_timeout:
            raise PlaywrightTimeoutError("Timeout 20000ms exceeded.")
        self.url = self.redirect_to or url

    async def wait_for_selector(self, selector, timeout=None):
        return None

    def locator(self, selector):
        return FakeLocator(self)

    async def wait_for_timeout(self, ms):
        return None

    async def content(self):
        return self.html


class TestVisitor:
    @pytest.mark.asyncio
    async def test_expands_collapsed_sections_and_reads_snapshot(self):
        page = FakeProductPage()

        data = await ProductPageVisitor(page).visit(PAGE_URL)

        assert page.toggles == {"Description": "true", "Warnings": "true", "More": "true"}
        assert data.serving_size == "1 Capsule"
        assert data.back_image_url == "https://us.fullscript.com/images/d3-back.jpg"

    @pytest.mark.asyncio
    async def test_redirect_to_login(self):
        page = FakeProductPage(redirect_to="https://fullscript.com/login?next=/u/catalog")
        with pytest.raises(AuthenticationError):
            await ProductPageVisitor(page).visit(PAGE_URL)

    @pytest.mark.asyncio
    async def test_navigation_timeout(self):
        with pytest.raises(NavigationTimeoutError) as exc_info:
            await ProductPageVisitor(FakeProductPage(goto_timeout=True)).visit(PAGE_URL)
        assert exc_info.value.url == PAGE_URL
