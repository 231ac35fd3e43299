"""
Signs in through the site's email/password form and works out which regional
host the session landed on (e.g. https://us.fullscript.com).
"""
import logging
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .cache import save_snapshot
from .config import Settings
from .delays import random_delay, retry_with_backoff
from .errors import AuthenticationError, NavigationTimeoutError

logger = logging.getLogger(__name__)

EMAIL_INPUT = 'input[type="email"], input[name="email"]'
PASSWORD_INPUT = 'input[type="password"], input[name="password"]'
SUBMIT_BUTTON = 'button[type="submit"], input[type="submit"]'

FORM_TIMEOUT_MS = 10000
SUBMIT_TIMEOUT_MS = 30000
MAX_REDIRECT_CHECKS = 10
REDIRECT_WAIT_S = 30

# True once the URL moved off the login page or the password field went away
# (SPA-style login doesn't always navigate).
_LOGIN_SETTLED_JS = """
(startUrl) => {
  const urlChanged = window.location.href !== startUrl;
  const pw = document.querySelector('input[type="password"]');
  return urlChanged || !pw || !pw.offsetParent;
}
"""


def base_url_from(url: str) -> Optional[str]:
    """
    >>> base_url_from("https://us.fullscript.com/u/dashboard?x=1")
    'https://us.fullscript.com'
    """
    parts = urlparse(url or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def is_expected_host(url: str, host: str) -> bool:
    netloc = urlparse(url or "").hostname or ""
    return netloc == host or netloc.endswith("." + host)


async def _open_login_page(page: Page, login_url: str) -> None:
    async def _goto():
        await page.goto(login_url, wait_until="domcontentloaded")

    try:
        await retry_with_backoff(_goto, max_attempts=3, should_retry=lambda e: isinstance(e, PlaywrightTimeoutError))
    except PlaywrightTimeoutError as exc:
        raise NavigationTimeoutError(login_url, "login page did not load") from exc


async def _submit(page: Page, password_input) -> None:
    form = await password_input.evaluate_handle("el => el.closest('form')")
    form_el = form.as_element()
    if form_el is None:
        raise AuthenticationError("Password form not found")

    button = await form_el.query_selector(SUBMIT_BUTTON)
    if button is None:
        # some forms don't mark their button type="submit"
        button = await form_el.query_selector("button")
        if button is None:
            raise AuthenticationError("Submit button not found in password form")
        logger.info("[AUTH] Found button without type=submit, using it")
    await button.click()


async def _debug_snapshot(page: Page, settings: Settings, reason: str) -> None:
    try:
        html = await page.content()
    except PlaywrightError as e:
        logger.debug("[AUTH] No snapshot available: %s", e)
        return
    path = save_snapshot(f"login:{reason}:{page.url}", html, settings.debug_dir)
    logger.info("[AUTH] Saved page snapshot to %s", path)


async def _wait_for_expected_host(page: Page, host: str, delay) -> str:
    """
    Logins sometimes bounce through a third-party identity provider; wait for
    the browser to come back to the expected host.
    """
    current = page.url
    started = time.monotonic()
    checks = 0
    while (
        not is_expected_host(current, host)
        and checks < MAX_REDIRECT_CHECKS
        and time.monotonic() - started < REDIRECT_WAIT_S
    ):
        logger.info("[AUTH] Waiting for redirect back to %s (check %d, current %s)", host, checks + 1, current)
        try:
            await page.wait_for_url(lambda u: is_expected_host(u, host), timeout=5000)
        except PlaywrightTimeoutError:
            await delay(1000, 2000)
        current = page.url
        checks += 1
    return current


async def authenticate(
    page: Page,
    email: str,
    password: str,
    settings: Settings,
    delay: Callable[[int, int], Awaitable[None]] = random_delay,
) -> str:
    """
    Log in and return the base URL of the host the session landed on.

    Raises AuthenticationError when the form can't be submitted, the browser
    stays on the login page, or the landing host isn't the expected one.
    """
    logger.info("[AUTH] Navigating to login page...")
    await _open_login_page(page, settings.login_url)
    await delay(1000, 2000)

    try:
        await page.wait_for_selector(f"{EMAIL_INPUT}, {PASSWORD_INPUT}", timeout=FORM_TIMEOUT_MS)
    except PlaywrightTimeoutError as exc:
        await _debug_snapshot(page, settings, "no-form")
        raise AuthenticationError("Login form not found") from exc

    email_input = await page.query_selector(EMAIL_INPUT)
    if email_input is None:
        raise AuthenticationError("Email input field not found")
    await email_input.fill(email)
    await delay(500, 1000)

    password_input = await page.query_selector(PASSWORD_INPUT)
    if password_input is None:
        raise AuthenticationError("Password input field not found")
    await password_input.fill(password)
    await delay(500, 1000)

    initial_url = page.url
    logger.info("[AUTH] Submitting login form...")
    await _submit(page, password_input)

    try:
        await page.wait_for_function(
            _LOGIN_SETTLED_JS, arg=initial_url, timeout=SUBMIT_TIMEOUT_MS, polling=1000
        )
    except PlaywrightTimeoutError as exc:
        logger.error("[AUTH] Login timeout - still at %s", page.url)
        await _debug_snapshot(page, settings, "timeout")
        raise AuthenticationError("Login timeout - form submission did not complete within 30 seconds") from exc

    await delay(2000, 3000)
    current = await _wait_for_expected_host(page, settings.expected_host, delay)

    if "/login" in urlparse(current).path:
        await _debug_snapshot(page, settings, "still-on-login")
        raise AuthenticationError("Login failed - still on login page")
    if not is_expected_host(current, settings.expected_host):
        raise AuthenticationError(f"Login failed - redirected to unexpected host: {current}")

    base_url = base_url_from(current)
    logger.info("[AUTH] Login successful, base URL %s", base_url)
    return base_url
