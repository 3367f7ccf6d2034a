"""
Browser Automation Module for serpshot

Provides the browser side of a capture run:
- Headless, disposable Chromium contexts (default)
- Visible Chrome on a persistent on-disk profile (for bot-wary engines)
- Mobile / desktop device emulation with a fixed tall viewport
- Deterministic geolocation, locale and timezone

Uses Playwright's async API.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
import logging

try:
    from playwright.async_api import async_playwright, Browser, BrowserContext, Page
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    PLAYWRIGHT_AVAILABLE = False
    async_playwright = None
    Browser = None
    BrowserContext = None
    Page = None

from ..config import (
    CaptureConfig,
    DESKTOP_USER_AGENT,
    DESKTOP_WIDTH,
    MOBILE_DEVICE_PRESET,
    MOBILE_USER_AGENT,
    PERSISTENT_ENGINE,
)
from ..errors import BrowserLaunchError
from ..types import ClipRect, DeviceMode, Engine
from .page_base import BaseBrowser, BasePage


logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]


class PlaywrightPage(BasePage):
    """BasePage backed by a Playwright Page."""

    def __init__(self, page: "Page") -> None:
        self._page = page

    async def navigate(self, url: str) -> None:
        logger.debug(f"📍 Navigating to {url}")
        await self._page.goto(url)

    async def wait_network_idle(self) -> None:
        await self._page.wait_for_load_state("networkidle")

    async def wait(self, ms: float) -> None:
        await self._page.wait_for_timeout(ms)

    async def screenshot(self, clip: ClipRect, quality: int) -> bytes:
        return await self._page.screenshot(
            type="jpeg",
            quality=quality,
            full_page=False,
            clip=clip.to_dict(),
        )

    async def content(self) -> str:
        return await self._page.content()

    async def evaluate(self, script: str) -> Any:
        return await self._page.evaluate(script)

    def viewport_width(self) -> Optional[int]:
        size = self._page.viewport_size
        return size["width"] if size else None

    async def close(self) -> None:
        await self._page.close()


class BrowserAutomation(BaseBrowser):
    """
    Browser launcher for a single capture run.

    Features:
    - Persistent context: visible system Chrome reusing a fixed profile dir,
      only honoured for the engine that is aggressive about bot detection
    - Headless mode: throwaway Chromium for every other case
    - Device emulation: iPhone 13 preset or a 1920px desktop, both with a
      1800px tall viewport and a forced 1:1 pixel ratio
    """

    def __init__(
        self,
        engine: Engine,
        device: DeviceMode,
        use_chrome: bool = False,
        config: Optional[CaptureConfig] = None,
    ):
        """
        Initialize browser automation.

        Args:
            engine: Search engine this run targets
            device: Device profile to emulate
            use_chrome: Request the visible, persistent Chrome profile. Ignored
                        for every engine except the persistent one.
            config: Capture tunables (viewport height, profile dir, locality)
        """
        if not PLAYWRIGHT_AVAILABLE:
            raise BrowserLaunchError(
                "Playwright not installed. Install with: pip install playwright && playwright install chromium"
            )

        self.engine = engine
        self.device = device
        self.config = config or CaptureConfig()
        self._is_persistent = use_chrome and engine is PERSISTENT_ENGINE

        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    @property
    def persistent(self) -> bool:
        return self._is_persistent

    async def start(self) -> None:
        """Launch the browser and create the shared context."""
        try:
            self.playwright = await async_playwright().start()
            if self._is_persistent:
                await self._launch_persistent()
            else:
                await self._launch_headless()
        except Exception as e:
            logger.error(f"Browser launch failed: {e}")
            try:
                await self.stop()
            except Exception as cleanup_error:
                logger.warning(f"⚠️ Cleanup after failed launch also failed: {cleanup_error}")
            raise BrowserLaunchError(f"Unable to launch browser: {e}") from e

        logger.info("✅ Browser ready")

    async def _launch_persistent(self) -> None:
        profile_dir = self.config.profile_dir
        profile_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"🌐 Using system Chrome in {self.device.value} mode for {self.engine.value} searches")
        logger.info(f"🌐 Launching persistent context from {profile_dir}")

        self.context = await self.playwright.chromium.launch_persistent_context(
            user_data_dir=str(profile_dir),
            channel=self.config.chrome_channel,
            headless=False,
            args=LAUNCH_ARGS + ["--disable-dev-shm-usage"],
            **self._context_options(override_user_agent=False),
        )
        self.browser = self.context.browser

    async def _launch_headless(self) -> None:
        logger.info(f"🌐 Using headless browser in {self.device.value} mode for {self.engine.value} searches")
        self.browser = await self.playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)
        self.context = await self.browser.new_context(**self._context_options(override_user_agent=True))

    def _context_options(self, override_user_agent: bool) -> Dict[str, Any]:
        """Viewport, pixel ratio, user agent and locality for the context."""
        height = self.config.viewport_height
        latitude, longitude = self.config.geolocation

        if self.device is DeviceMode.MOBILE:
            descriptor = dict(self.playwright.devices[MOBILE_DEVICE_PRESET])
            descriptor.pop("default_browser_type", None)
            options: Dict[str, Any] = {
                **descriptor,
                "viewport": {**descriptor["viewport"], "height": height},
            }
            if override_user_agent:
                options["user_agent"] = MOBILE_USER_AGENT
        else:
            options = {"viewport": {"width": DESKTOP_WIDTH, "height": height}}
            if override_user_agent:
                options["user_agent"] = DESKTOP_USER_AGENT

        options.update(
            device_scale_factor=1,
            permissions=["geolocation"],
            geolocation={"latitude": latitude, "longitude": longitude},
            locale=self.config.locale,
            timezone_id=self.config.timezone_id,
        )
        return options

    async def new_page(self) -> PlaywrightPage:
        """Open a fresh tab in the shared context."""
        if not self.context:
            raise RuntimeError("Browser not started. Call start() first.")
        return PlaywrightPage(await self.context.new_page())

    async def stop(self) -> None:
        """
        Close the context, the browser and Playwright itself.

        Each step runs even if an earlier one fails; the first failure is
        re-raised once everything has been released.
        """
        first_error: Optional[Exception] = None

        context, self.context = self.context, None
        browser, self.browser = self.browser, None
        playwright, self.playwright = self.playwright, None

        steps = []
        if context:
            steps.append(("context", context.close))
        # A persistent context owns its browser; closing the context closes it.
        if browser and not self._is_persistent:
            steps.append(("browser", browser.close))
        if playwright:
            steps.append(("playwright", playwright.stop))

        for name, close in steps:
            try:
                await close()
            except Exception as e:
                logger.warning(f"⚠️ Failed to close {name}: {e}")
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        logger.info("🛑 Browser stopped")

    async def __aenter__(self) -> "BrowserAutomation":
        """Context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.stop()
