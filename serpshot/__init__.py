"""serpshot - search results page screenshots from a CSV of queries."""

from .config import CaptureConfig, CaptureOptions
from .orchestrator import CaptureOrchestrator
from .report import CompareReport, RunReport, fit_for_upload, load_screenshots
from .types import ScreenshotData

__version__ = "0.3.0"

__all__ = [
    "CaptureConfig",
    "CaptureOptions",
    "CaptureOrchestrator",
    "CompareReport",
    "RunReport",
    "ScreenshotData",
    "fit_for_upload",
    "load_screenshots",
]
