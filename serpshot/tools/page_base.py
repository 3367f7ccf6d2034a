# serpshot/tools/page_base.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..types import ClipRect


class BasePage(ABC):
    """
    Abstract interface for a single browser tab.
    The capture state machine only talks to pages through this.
    """

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load a URL in this page."""
        ...

    @abstractmethod
    async def wait_network_idle(self) -> None:
        """Block until there are no in-flight network requests."""
        ...

    @abstractmethod
    async def wait(self, ms: float) -> None:
        """Sleep for a fixed number of milliseconds."""
        ...

    @abstractmethod
    async def screenshot(self, clip: ClipRect, quality: int) -> bytes:
        """
        Capture a clipped JPEG screenshot.

        Args:
            clip: Region to capture, relative to the page origin
            quality: JPEG quality (1-100)

        Returns:
            Encoded JPEG bytes
        """
        ...

    @abstractmethod
    async def content(self) -> str:
        """Current page HTML."""
        ...

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Run JavaScript in the page and return its result."""
        ...

    @abstractmethod
    def viewport_width(self) -> Optional[int]:
        """Viewport width in CSS pixels, if known."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class BaseBrowser(ABC):
    """A started browser context that hands out isolated pages."""

    @property
    @abstractmethod
    def persistent(self) -> bool:
        """True when running a visible browser on a durable profile."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Launch the browser and its shared context."""
        ...

    @abstractmethod
    async def new_page(self) -> BasePage:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Close the context and browser."""
        ...
