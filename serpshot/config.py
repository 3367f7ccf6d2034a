# serpshot/config.py
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple
import os

from .types import DeviceMode, Engine


def _env_int(name: str, default: int) -> int:
    """Parse int environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Parse float environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Engine that aggressively challenges automated traffic; the only one that
# may run through the visible, persistent Chrome profile.
PERSISTENT_ENGINE = Engine.GOOGLE

# Baseline engine captured first in compare mode.
BASELINE_ENGINE = Engine.YAHOO

MOBILE_DEVICE_PRESET = "iPhone 13"
MOBILE_FALLBACK_WIDTH = 390
DESKTOP_WIDTH = 1920

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 15_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/15.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/112.0.0.0 Safari/537.36"
)


@dataclass
class CaptureConfig:
    """Tunables for browser acquisition and the capture state machine."""

    # Retry policy
    max_retries: int = field(default_factory=lambda: _env_int("SERPSHOT_MAX_RETRIES", 2))
    retry_backoff: float = field(default_factory=lambda: _env_float("SERPSHOT_RETRY_BACKOFF", 1.0))

    # Batching
    batch_size: int = field(default_factory=lambda: _env_int("SERPSHOT_BATCH_SIZE", 3))
    persistent_batch_size: int = 1

    # Human-pacing jitter after navigation (milliseconds)
    jitter_min_ms: int = 500
    jitter_max_ms: int = 1500

    # Seconds to leave a visible browser on a CAPTCHA page for manual solving
    captcha_wait: float = field(default_factory=lambda: _env_float("SERPSHOT_CAPTCHA_WAIT", 30.0))

    # Viewport / clip geometry
    viewport_height: int = field(default_factory=lambda: _env_int("SERPSHOT_VIEWPORT_HEIGHT", 1800))

    # Deterministic locality
    geolocation: Tuple[float, float] = (37.774929, -122.419416)
    locale: str = "en-US"
    timezone_id: str = "America/Los_Angeles"

    # Persistent Chrome profile
    profile_dir: Path = field(
        default_factory=lambda: Path(os.getenv("SERPSHOT_PROFILE_DIR", str(Path.cwd() / "chrome-data-dir")))
    )
    chrome_channel: str = "chrome"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.jitter_min_ms > self.jitter_max_ms:
            raise ValueError("jitter_min_ms must not exceed jitter_max_ms")


@dataclass
class CaptureOptions:
    """Per-invocation options, as given on the command line."""

    csv_file: Path
    output: Path = Path("search_screenshots")
    column: Optional[str] = None
    engine: Engine = Engine.YAHOO
    delay: float = 1.0
    mode: DeviceMode = DeviceMode.MOBILE
    use_chrome: bool = False
    compare_mode: bool = False
    quality: int = 80

    def __post_init__(self) -> None:
        self.csv_file = Path(self.csv_file)
        self.output = Path(self.output)
        self.engine = Engine(self.engine)
        self.mode = DeviceMode(self.mode)
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be between 1 and 100, got {self.quality}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    @property
    def persistent(self) -> bool:
        """Whether this run actually uses the visible Chrome profile."""
        return self.use_chrome and self.engine is PERSISTENT_ENGINE
