"""Browser-side tooling for capture runs."""

from .page_base import BaseBrowser, BasePage
from .browser_automation import BrowserAutomation, PlaywrightPage

__all__ = [
    "BaseBrowser",
    "BasePage",
    "BrowserAutomation",
    "PlaywrightPage",
]
