# serpshot/run_context.py
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional
import logging

from .config import CaptureConfig
from .naming import run_timestamp
from .tools.browser_automation import BrowserAutomation
from .tools.page_base import BaseBrowser
from .types import DeviceMode, Engine


logger = logging.getLogger(__name__)

BrowserFactory = Callable[[Engine, DeviceMode, bool, CaptureConfig], BaseBrowser]


@dataclass
class CaptureSession:
    """
    Process-scoped state for one capture pass.

    Created before any request is processed and torn down after all of them
    have resolved. Pages opened through `browser` share its context.
    """
    engine: Engine
    device: DeviceMode
    output_dir: Path
    browser: BaseBrowser
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closing: bool = False

    @property
    def persistent(self) -> bool:
        return self.browser.persistent

    @property
    def run_timestamp(self) -> str:
        return run_timestamp(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize session metadata for logging or the manifest."""
        return {
            "engine": self.engine.value,
            "device": self.device.value,
            "output_dir": str(self.output_dir),
            "run_timestamp": self.run_timestamp,
            "persistent": self.persistent,
        }


def default_browser_factory(
    engine: Engine,
    device: DeviceMode,
    use_chrome: bool,
    config: CaptureConfig,
) -> BaseBrowser:
    return BrowserAutomation(engine=engine, device=device, use_chrome=use_chrome, config=config)


@asynccontextmanager
async def open_session(
    engine: Engine,
    device: DeviceMode,
    output_dir: Path,
    *,
    use_chrome: bool = False,
    config: Optional[CaptureConfig] = None,
    browser_factory: Optional[BrowserFactory] = None,
    created_at: Optional[datetime] = None,
) -> AsyncIterator[CaptureSession]:
    """
    Start a browser and yield a CaptureSession; always tear it down on exit.

    Launch failures propagate as BrowserLaunchError and are not retried.
    Teardown failures are logged and do not replace the body's outcome.
    """
    config = config or CaptureConfig()
    factory = browser_factory or default_browser_factory
    browser = factory(engine, device, use_chrome, config)

    await browser.start()
    session = CaptureSession(
        engine=engine,
        device=device,
        output_dir=output_dir,
        browser=browser,
        created_at=created_at or datetime.now(timezone.utc),
    )
    logger.debug(f"[Session] Opened: {session.to_dict()}")
    try:
        yield session
    finally:
        session.closing = True
        try:
            await browser.stop()
        except Exception as e:
            # Captures already on disk stay valid; the run still gets reported.
            logger.error(f"[Session] Browser teardown failed: {e}", exc_info=True)
        else:
            logger.debug(f"[Session] Closed: {output_dir}")
