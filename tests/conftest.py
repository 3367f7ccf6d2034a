"""Shared fakes for driving the capture pipeline without a real browser."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import pytest

from serpshot.config import CaptureConfig
from serpshot.errors import BrowserLaunchError
from serpshot.tools.page_base import BaseBrowser, BasePage
from serpshot.types import ClipRect, DeviceMode, Engine


RESULTS_HTML = "<html><body><h1>Results</h1><p>Ten blue links</p></body></html>"
CAPTCHA_HTML = (
    "<html><body><p>Our systems have detected unusual traffic from your computer network.</p>"
    "<div class='g-recaptcha'></div></body></html>"
)
FAKE_JPEG = b"\xff\xd8\xff\xe0fake-jpeg\xff\xd9"

FIXED_NOW = datetime(2024, 5, 1, 13, 25, 1, 123000, tzinfo=timezone.utc)


def _query_from(url: str) -> str:
    params = parse_qs(urlparse(url).query)
    for key in ("q", "p"):
        if key in params:
            return params[key][0]
    return ""


class FakePage(BasePage):
    def __init__(self, browser: "FakeBrowser", width: Optional[int]) -> None:
        self.browser = browser
        self.width = width
        self.url: Optional[str] = None
        self.html = RESULTS_HTML
        self.waits: List[float] = []
        self.closed = False

    async def navigate(self, url: str) -> None:
        self.url = url
        self.browser.urls.append(url)
        action = self.browser.next_action(_query_from(url))
        if action == "fail":
            raise RuntimeError("boom")
        if action == "captcha":
            self.html = CAPTCHA_HTML

    async def wait_network_idle(self) -> None:
        await asyncio.sleep(0)

    async def wait(self, ms: float) -> None:
        self.waits.append(ms)
        self.browser.waits.append(ms)
        await asyncio.sleep(0)

    async def screenshot(self, clip: ClipRect, quality: int) -> bytes:
        self.browser.screenshots.append((clip, quality))
        await asyncio.sleep(0)
        return FAKE_JPEG

    async def content(self) -> str:
        return self.html

    async def evaluate(self, script: str) -> Any:
        return None

    def viewport_width(self) -> Optional[int]:
        return self.width

    async def close(self) -> None:
        self.closed = True
        self.browser.active -= 1
        self.browser.closed += 1


class FakeBrowser(BaseBrowser):
    """
    In-memory browser.

    `plan` maps a query to the actions for its successive attempts:
    "ok", "fail" (navigation raises) or "captcha". Once a list runs out the
    attempt succeeds; the "always_fail" and "always_captcha" shorthands
    repeat forever.
    """

    def __init__(
        self,
        *,
        persistent: bool = False,
        plan: Optional[Dict[str, Any]] = None,
        fail_start: bool = False,
        width: Optional[int] = 390,
        events: Optional[List[str]] = None,
        label: str = "browser",
    ) -> None:
        self._persistent = persistent
        self.plan = {k: (list(v) if isinstance(v, list) else v) for k, v in (plan or {}).items()}
        self.fail_start = fail_start
        self.width = width
        self.events = events if events is not None else []
        self.label = label
        self.started = False
        self.stopped = False
        self.active = 0
        self.max_active = 0
        self.opened = 0
        self.closed = 0
        self.urls: List[str] = []
        self.waits: List[float] = []
        self.screenshots: List[Any] = []

    @property
    def persistent(self) -> bool:
        return self._persistent

    def next_action(self, query: str) -> str:
        actions = self.plan.get(query)
        if actions == "always_fail":
            return "fail"
        if actions == "always_captcha":
            return "captcha"
        if actions:
            return actions.pop(0)
        return "ok"

    async def start(self) -> None:
        self.events.append(f"start {self.label}")
        if self.fail_start:
            raise BrowserLaunchError("chromium failed to launch")
        self.started = True

    async def new_page(self) -> FakePage:
        if self.stopped:
            raise RuntimeError("browser already stopped")
        self.opened += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return FakePage(self, self.width)

    async def stop(self) -> None:
        self.events.append(f"stop {self.label}")
        self.stopped = True


class FakeBrowserFactory:
    """Records every browser the orchestrator asks for."""

    def __init__(self, **browser_kwargs: Any) -> None:
        self.browser_kwargs = browser_kwargs
        self.calls: List[tuple] = []
        self.browsers: List[FakeBrowser] = []
        self.events: List[str] = []

    def __call__(self, engine: Engine, device: DeviceMode, use_chrome: bool, config: CaptureConfig) -> FakeBrowser:
        self.calls.append((engine, device, use_chrome))
        browser = FakeBrowser(
            persistent=use_chrome and engine is Engine.GOOGLE,
            events=self.events,
            label=engine.value,
            **self.browser_kwargs,
        )
        self.browsers.append(browser)
        return browser


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def config() -> CaptureConfig:
    return CaptureConfig(
        max_retries=2,
        retry_backoff=1.0,
        batch_size=3,
        captcha_wait=30.0,
        viewport_height=1800,
    )
