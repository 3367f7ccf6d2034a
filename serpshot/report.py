# serpshot/report.py
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import io
import json
import logging

from PIL import Image, UnidentifiedImageError

from .types import CaptureOutcome, CaptureResult, DeviceMode, Engine, ScreenshotData


logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"

# Upload limits of the design canvas the screenshots end up on
MAX_IMAGE_SIZE = 2 * 1024 * 1024
SAFE_IMAGE_DIMENSION = 3800
RESIZE_QUALITY = 80


@dataclass
class RunReport:
    """Outcome of one capture pass over a set of queries."""
    engine: Engine
    device: DeviceMode
    output_dir: Optional[Path]
    run_timestamp: str
    persistent: bool = False
    results: List[CaptureResult] = field(default_factory=list)

    def _with(self, outcome: CaptureOutcome) -> List[CaptureResult]:
        return [r for r in self.results if r.outcome is outcome]

    @property
    def succeeded(self) -> List[CaptureResult]:
        return self._with(CaptureOutcome.SUCCESS)

    @property
    def failed(self) -> List[CaptureResult]:
        return self._with(CaptureOutcome.FAILED)

    @property
    def cancelled(self) -> List[CaptureResult]:
        return self._with(CaptureOutcome.CANCELLED)

    @property
    def all_failed(self) -> bool:
        """True when there was work to do and none of it succeeded."""
        return bool(self.results) and not self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine.value,
            "device": self.device.value,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "run_timestamp": self.run_timestamp,
            "persistent": self.persistent,
            "total": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "cancelled": len(self.cancelled),
            "results": [r.to_dict() for r in self.results],
        }

    def summary(self) -> str:
        line = (
            f"{self.engine.value}/{self.device.value}: "
            f"{len(self.succeeded)}/{len(self.results)} captured"
        )
        if self.failed:
            line += f", {len(self.failed)} failed"
        if self.cancelled:
            line += f", {len(self.cancelled)} cancelled"
        if self.output_dir:
            line += f" -> {self.output_dir}"
        return line


@dataclass
class CompareReport:
    """Baseline pass plus comparison pass from compare mode."""
    baseline: RunReport
    comparison: RunReport

    @property
    def reports(self) -> List[RunReport]:
        return [self.baseline, self.comparison]

    @property
    def all_failed(self) -> bool:
        has_work = any(r.results for r in self.reports)
        return has_work and not any(r.succeeded for r in self.reports)


def write_manifest(report: RunReport) -> Optional[Path]:
    """Write the structured per-query report next to the screenshots."""
    if report.output_dir is None:
        return None
    path = report.output_dir / MANIFEST_NAME
    path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    logger.debug(f"[Report] Manifest written: {path}")
    return path


def load_screenshots(report: RunReport) -> List[ScreenshotData]:
    """
    Read back every successful capture as a ScreenshotData payload.

    Failed and cancelled requests produce nothing here; they are only in the
    manifest and the log.
    """
    screenshots: List[ScreenshotData] = []
    for result in report.succeeded:
        path = result.file_path
        if path is None or not path.exists():
            logger.warning(f"[Report] Missing screenshot for '{result.request.query}': {path}")
            continue
        screenshots.append(
            ScreenshotData(
                query=result.request.query,
                image_bytes=path.read_bytes(),
                filename=path.name,
                engine=result.request.engine.value,
            )
        )
    return screenshots


def fit_for_upload(image_bytes: bytes, filename: str) -> bytes:
    """
    Shrink an image that is too large for the canvas upload limits.

    Images over 3800px on a side, or over 2MB, are scaled so the longest side
    is 3800px and re-encoded. Anything that cannot be decoded is returned
    untouched.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            needs_resize = (
                width > SAFE_IMAGE_DIMENSION
                or height > SAFE_IMAGE_DIMENSION
                or len(image_bytes) > MAX_IMAGE_SIZE
            )
            if not needs_resize:
                logger.debug(f"[Report] {filename} is within safe limits ({width}x{height})")
                return image_bytes

            scale = min(1.0, SAFE_IMAGE_DIMENSION / max(width, height))
            new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
            logger.info(f"[Report] Resizing {filename}: {width}x{height} -> {new_size[0]}x{new_size[1]}")

            resized = img.resize(new_size, Image.Resampling.LANCZOS) if new_size != (width, height) else img.copy()
    except (UnidentifiedImageError, OSError) as exc:
        logger.error(f"[Report] Failed to load image for resizing: {filename}: {exc}")
        return image_bytes

    buffer = io.BytesIO()
    if filename.lower().endswith((".jpg", ".jpeg")):
        resized.convert("RGB").save(buffer, format="JPEG", quality=RESIZE_QUALITY)
    else:
        resized.save(buffer, format="PNG", optimize=True)
    data = buffer.getvalue()
    logger.info(f"[Report] Resized {filename}: {len(image_bytes) // 1024} KB -> {len(data) // 1024} KB")
    return data
