"""Headless-browser fetcher for the SENAMHI forecast page."""

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from senamhi.config.schema import SourceConfig
from senamhi.ingest.errors import (
    NavigationError,
    NavigationTimeout,
    ReadinessTimeout,
    SessionLaunchFailure,
)

logger = logging.getLogger(__name__)

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class BrowserFetcher:
    """Loads the forecast page in a throwaway Chromium session.

    Each call launches its own browser with a fresh, non-persistent context
    and closes everything before returning, whatever the outcome. Timeouts
    and launch problems are raised as FetchError subclasses; nothing is
    retried here.
    """

    def __init__(self, config: SourceConfig | None = None):
        self.config = config or SourceConfig()

    async def fetch_raw_document(self) -> str:
        """Return the page HTML once the forecast table is present."""
        cfg = self.config
        try:
            pw = await async_playwright().start()
        except (PlaywrightError, OSError) as e:
            raise SessionLaunchFailure(f"Could not start Playwright driver: {e}") from e

        try:
            html = await self._load_with(pw)
        finally:
            try:
                await pw.stop()
            except PlaywrightError as e:
                logger.warning("Playwright driver stop failed: %s", e)

        logger.info("Loaded %s (%d bytes)", cfg.url, len(html))
        return html

    async def _load_with(self, pw) -> str:
        cfg = self.config
        try:
            browser = await pw.chromium.launch(headless=cfg.headless, args=BROWSER_ARGS)
        except PlaywrightError as e:
            raise SessionLaunchFailure(f"Could not launch browser: {e}") from e

        try:
            context = await browser.new_context(user_agent=cfg.user_agent)
            page = await context.new_page()
            await self._navigate(page)
            await self._wait_until_ready(page)
            return await page.content()
        except PlaywrightError as e:
            if isinstance(e, PlaywrightTimeout):
                raise NavigationTimeout(f"Timed out handling {cfg.url}: {e}") from e
            raise NavigationError(f"Browser error on {cfg.url}: {e}") from e
        finally:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed: %s", e)

    async def _navigate(self, page) -> None:
        cfg = self.config
        logger.info("Navigating to %s", cfg.url)
        try:
            response = await page.goto(
                cfg.url,
                wait_until=cfg.wait_until,
                timeout=cfg.navigation_timeout_ms,
            )
        except PlaywrightTimeout as e:
            raise NavigationTimeout(
                f"Navigation to {cfg.url} exceeded {cfg.navigation_timeout_ms}ms"
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {cfg.url} failed: {e}") from e

        if response is None or response.status >= 400:
            status = response.status if response is not None else "no response"
            raise NavigationError(f"Navigation to {cfg.url} returned HTTP {status}")

    async def _wait_until_ready(self, page) -> None:
        cfg = self.config
        try:
            await page.wait_for_selector(
                cfg.readiness_selector, timeout=cfg.readiness_timeout_ms
            )
        except PlaywrightTimeout as e:
            raise ReadinessTimeout(
                f"{cfg.readiness_selector!r} not found within "
                f"{cfg.readiness_timeout_ms}ms"
            ) from e
