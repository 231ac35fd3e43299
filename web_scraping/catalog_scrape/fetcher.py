import logging
from contextlib import AsyncExitStack
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Route, async_playwright
from playwright_stealth import Stealth

from .config import Settings

logger = logging.getLogger(__name__)

UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920,1080",
]

EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
}

BLOCKED_RESOURCES = {"image", "stylesheet", "font", "media"}


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSession:
    """
    One stealthed Chromium, one context, one page for the length of a job.

        async with BrowserSession(settings) as page:
            ...

    Everything is torn down on exit, including when the body raises.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._stack: Optional[AsyncExitStack] = None

    async def __aenter__(self) -> Page:
        logger.info("[BROWSER] Initializing browser (headless=%s)", self.settings.headless)
        self._stack = AsyncExitStack()
        try:
            pw = await self._stack.enter_async_context(Stealth().use_async(async_playwright()))
            self.browser = await pw.chromium.launch(headless=self.settings.headless, args=LAUNCH_ARGS)
            self._stack.push_async_callback(self.browser.close)

            self.context = await self.browser.new_context(
                viewport={"width": 1920, "height": 1080},
                user_agent=UA,
                locale="en-US",
                timezone_id="America/New_York",
                permissions=[],
                extra_http_headers=EXTRA_HEADERS,
            )
            self._stack.push_async_callback(self.context.close)

            self.page = await self.context.new_page()
            await self.page.route("**/*", _block_heavy_resources)
        except BaseException:
            await self._stack.aclose()
            raise

        logger.info("[BROWSER] Browser initialized")
        return self.page

    async def __aexit__(self, exc_type, exc, tb) -> None:
        logger.info("[BROWSER] Closing browser...")
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self.page = self.context = self.browser = None
