"""
Tests for the login flow against a scripted fake page.
"""
from pathlib import Path
from typing import Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from catalog_scrape.errors import AuthenticationError
from catalog_scrape.login import EMAIL_INPUT, PASSWORD_INPUT, SUBMIT_BUTTON, authenticate, base_url_from, is_expected_host

from conftest import no_delay


class FakeElement:
    def __init__(self, page=None):
        self.page = page
        self.value = None
        self.clicked = False

    async def fill(self, value):
        self.value = value

    async def click(self, **kwargs):
        self.clicked = True
        self.page.url = self.page.landing_url

    async def evaluate_handle(self, script):
        return FakeHandle(self.page.form)


class FakeHandle:
    def __init__(self, element):
        self.element = element

    def as_element(self):
        return self.element


class FakeForm:
    def __init__(self, page, typed_submit=True):
        self.page = page
        self.typed_submit = typed_submit
        self.button = FakeElement(page)

    async def query_selector(self, selector):
        if selector == SUBMIT_BUTTON and not self.typed_submit:
            return None
        return self.button


class FakeLoginPage:
    def __init__(
        self,
        landing_url: str,
        form_present: bool = True,
        typed_submit: bool = True,
        settles: bool = True,
        form_found: bool = True,
    ):
        self.url = "about:blank"
        self.landing_url = landing_url
        self.form_present = form_present
        self.settles = settles
        self.form = FakeForm(self, typed_submit) if form_found else None
        self.email = FakeElement(self)
        self.password = FakeElement(self)

    async def goto(self, url, **kwargs):
        self.url = url

    async def wait_for_selector(self, selector, timeout=None):
        if not self.form_present:
            raise PlaywrightTimeoutError("Timeout 10000ms exceeded.")

    async def query_selector(self, selector) -> Optional[FakeElement]:
        if selector == EMAIL_INPUT:
            return self.email
        if selector == PASSWORD_INPUT:
            return self.password
        return None

    async def wait_for_function(self, script, arg=None, timeout=None, polling=None):
        if not self.settles:
            raise PlaywrightTimeoutError("Timeout 30000ms exceeded.")

    async def wait_for_url(self, predicate, timeout=None):
        if not predicate(self.url):
            raise PlaywrightTimeoutError("Timeout 5000ms exceeded.")

    async def content(self):
        return "<html><body>login</body></html>"


class TestHelpers:
    def test_base_url_from(self):
        assert base_url_from("https://us.fullscript.com/u/dashboard?x=1") == "https://us.fullscript.com"
        assert base_url_from("about:blank") is None
        assert base_url_from("") is None

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://fullscript.com/login", True),
            ("https://us.fullscript.com/u/catalog", True),
            ("https://notfullscript.com/", False),
            ("https://fullscript.com.evil.io/", False),
            ("https://accounts.google.com/o/oauth2", False),
        ],
    )
    def test_is_expected_host(self, url, expected):
        assert is_expected_host(url, "fullscript.com") is expected


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_returns_regional_base_url(self, settings):
        page = FakeLoginPage("https://us.fullscript.com/u/dashboard")

        base_url = await authenticate(page, "doc@example.com", "secret", settings, delay=no_delay)

        assert base_url == "https://us.fullscript.com"
        assert page.email.value == "doc@example.com"
        assert page.password.value == "secret"
        assert page.form.button.clicked

    @pytest.mark.asyncio
    async def test_untyped_button_is_used(self, settings):
        page = FakeLoginPage("https://ca.fullscript.com/u/dashboard", typed_submit=False)
        assert await authenticate(page, "a@b.c", "pw", settings, delay=no_delay) == "https://ca.fullscript.com"

    @pytest.mark.asyncio
    async def test_still_on_login_page(self, settings):
        page = FakeLoginPage("https://fullscript.com/login?error=invalid")

        with pytest.raises(AuthenticationError, match="still on login page"):
            await authenticate(page, "doc@example.com", "wrong", settings, delay=no_delay)

        snapshots = list(Path(settings.debug_dir).glob("*.html"))
        assert len(snapshots) == 1

    @pytest.mark.asyncio
    async def test_unexpected_host(self, settings):
        page = FakeLoginPage("https://phish.example.com/welcome")

        with pytest.raises(AuthenticationError, match="unexpected host"):
            await authenticate(page, "doc@example.com", "secret", settings, delay=no_delay)

    @pytest.mark.asyncio
    async def test_form_never_settles(self, settings):
        page = FakeLoginPage("https://fullscript.com/login", settles=False)

        with pytest.raises(AuthenticationError, match="Login timeout"):
            await authenticate(page, "doc@example.com", "secret", settings, delay=no_delay)

    @pytest.mark.asyncio
    async def test_no_login_form(self, settings):
        page = FakeLoginPage("https://fullscript.com/login", form_present=False)

        with pytest.raises(AuthenticationError, match="Login form not found"):
            await authenticate(page, "doc@example.com", "secret", settings, delay=no_delay)

    @pytest.mark.asyncio
    async def test_password_outside_a_form(self, settings):
        page = FakeLoginPage("https://fullscript.com/login", form_found=False)

        with pytest.raises(AuthenticationError, match="Password form not found"):
            await authenticate(page, "doc@example.com", "secret", settings, delay=no_delay)
