# serpshot/types.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class Engine(str, Enum):
    """Supported search engines."""
    GOOGLE = "google"
    BING = "bing"
    DUCKDUCKGO = "duckduckgo"
    YAHOO = "yahoo"

    @classmethod
    def parse(cls, value: Any) -> "Engine":
        """Coerce a value to an Engine, falling back to Yahoo for anything unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.YAHOO


class DeviceMode(str, Enum):
    """Device profile to emulate."""
    MOBILE = "mobile"
    DESKTOP = "desktop"


class CaptureOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CaptureRequest:
    """One query to capture. Immutable once built."""
    sequence_index: int
    query: str
    engine: Engine
    device: DeviceMode

    def __post_init__(self) -> None:
        if self.sequence_index < 0:
            raise ValueError(f"sequence_index must be >= 0, got {self.sequence_index}")
        if not self.query or not self.query.strip():
            raise ValueError("query must be a non-empty string")


@dataclass
class CaptureResult:
    """Final outcome for a single CaptureRequest."""
    request: CaptureRequest
    outcome: CaptureOutcome
    attempts: int
    file_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CaptureOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the run manifest."""
        return {
            "index": self.request.sequence_index,
            "query": self.request.query,
            "engine": self.request.engine.value,
            "device": self.request.device.value,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "file": self.file_path.name if self.file_path else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class ClipRect:
    """Screenshot clip region in CSS pixels."""
    x: int
    y: int
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ScreenshotData:
    """Payload handed to the rendering layer for each successful capture."""
    query: str
    image_bytes: bytes
    filename: str
    engine: str
