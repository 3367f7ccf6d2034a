# serpshot/pipeline.py
"""
Batched, retrying screenshot capture.

Each request runs through a small state machine on its own page:

    Idle -> Navigating -> WaitingNetworkIdle -> CaptchaCheck
         -> (CaptchaWait | Capturing) -> Done

Any exception, or a CAPTCHA seen by a headless browser, sends the request
back to Idle on a fresh page until its retries run out. Requests are
grouped into fixed-size batches; a batch runs concurrently on the shared
context and must finish before the next one starts.
"""
from __future__ import annotations
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence
import asyncio
import logging
import math
import random

from .captcha import CaptchaDetector, detect_captcha
from .config import CaptureConfig, DESKTOP_WIDTH, MOBILE_FALLBACK_WIDTH
from .errors import CaptureCancelled, CaptureError
from .naming import build_filename, search_url
from .run_context import CaptureSession
from .tools.page_base import BasePage
from .types import CaptureOutcome, CaptureRequest, CaptureResult, ClipRect, DeviceMode


logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class CaptureState(Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    WAITING_NETWORK_IDLE = "waiting_network_idle"
    CAPTCHA_CHECK = "captcha_check"
    CAPTCHA_WAIT = "captcha_wait"
    CAPTURING = "capturing"
    RETRY = "retry"
    DONE = "done"


class CapturePipeline:
    """Drives CaptureRequests through a CaptureSession's browser."""

    def __init__(
        self,
        session: CaptureSession,
        *,
        delay: float = 1.0,
        quality: int = 80,
        config: Optional[CaptureConfig] = None,
        captcha_detector: CaptchaDetector = detect_captcha,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.session = session
        self.delay = delay
        self.quality = quality
        self.config = config or CaptureConfig()
        self.captcha_detector = captcha_detector
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._cancel_event = cancel_event
        self._completed = 0
        self._total = 0

    @property
    def batch_size(self) -> int:
        """One page at a time on a visible profile, a small batch otherwise."""
        if self.session.persistent:
            return self.config.persistent_batch_size
        return self.config.batch_size

    @property
    def max_attempts(self) -> int:
        return self.config.max_retries + 1

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Batch scheduler
    # ------------------------------------------------------------------

    async def run(self, requests: Sequence[CaptureRequest]) -> List[CaptureResult]:
        """
        Capture every request, batch by batch.

        Returns one CaptureResult per request, in request order, regardless
        of the order in which concurrent captures finish.
        """
        if self.session.closing:
            raise RuntimeError("Capture session is shutting down")

        self._total = len(requests)
        self._completed = 0
        size = self.batch_size
        batch_count = math.ceil(len(requests) / size) if requests else 0
        results: List[CaptureResult] = []

        logger.info(
            f"[Pipeline] Capturing {len(requests)} queries on {self.session.engine.value} "
            f"({self.session.device.value}) in {batch_count} batches of up to {size}"
        )

        for batch_no, start in enumerate(range(0, len(requests), size), 1):
            batch = requests[start:start + size]
            if self._cancelled():
                logger.warning(f"[Pipeline] Cancelled before batch {batch_no}/{batch_count}")
                results.extend(self._cancelled_result(r, 0) for r in requests[start:])
                break

            batch_results = await asyncio.gather(*(self._capture_with_progress(r) for r in batch))
            results.extend(batch_results)
            logger.info(f"[Pipeline] Completed batch {batch_no}/{batch_count}")

        return results

    async def _capture_with_progress(self, request: CaptureRequest) -> CaptureResult:
        result = await self.capture(request)
        self._completed += 1
        pct = 100 * self._completed // self._total if self._total else 100
        logger.info(
            f"[Pipeline] [{self._completed}/{self._total}] {pct}% "
            f"{result.outcome.value}: {request.query!r}"
        )
        return result

    # ------------------------------------------------------------------
    # Per-query state machine
    # ------------------------------------------------------------------

    async def capture(self, request: CaptureRequest) -> CaptureResult:
        """Capture one request, retrying up to max_retries times."""
        filename = build_filename(request.sequence_index, request.engine, request.device, request.query)
        file_path = self.session.output_dir / filename
        max_retries = self.config.max_retries

        retries = 0
        attempts = 0
        last_error: Optional[str] = None

        while retries <= max_retries:
            if self._cancelled():
                return self._cancelled_result(request, attempts)

            attempts += 1
            self._trace(request, CaptureState.IDLE, attempts)
            try:
                captured = await self._attempt(request, file_path)
            except CaptureCancelled:
                return self._cancelled_result(request, attempts)
            except Exception as e:
                retries += 1
                last_error = str(e) or e.__class__.__name__
                if retries <= max_retries:
                    logger.warning(
                        f"[Pipeline] Attempt {attempts}/{self.max_attempts} failed for query "
                        f"'{request.query}': {last_error}. Retrying..."
                    )
                    self._trace(request, CaptureState.RETRY, attempts)
                    await self._sleep(self.config.retry_backoff)
                else:
                    logger.error(
                        f"[Pipeline] Failed to process query '{request.query}' "
                        f"after {max_retries} retries: {last_error}"
                    )
                continue

            if captured:
                self._trace(request, CaptureState.DONE, attempts)
                logger.info(f"[Pipeline] Saved: {file_path}")
                return CaptureResult(
                    request=request,
                    outcome=CaptureOutcome.SUCCESS,
                    attempts=attempts,
                    file_path=file_path,
                )

            # Headless CAPTCHA: burn a retry and start over on a fresh page.
            retries += 1
            last_error = "CAPTCHA detected"
            logger.warning(
                f"[Pipeline] CAPTCHA detected for query '{request.query}' "
                f"(attempt {attempts}/{self.max_attempts})"
            )
            self._trace(request, CaptureState.RETRY, attempts)

        self._trace(request, CaptureState.DONE, attempts)
        return CaptureResult(
            request=request,
            outcome=CaptureOutcome.FAILED,
            attempts=attempts,
            error=last_error,
        )

    async def _attempt(self, request: CaptureRequest, file_path: Path) -> bool:
        """
        Run one attempt on a fresh page.

        Returns True once the screenshot is on disk, False when a headless
        browser hit a CAPTCHA. Any other problem raises.
        """
        page = await self.session.browser.new_page()
        try:
            self._trace(request, CaptureState.NAVIGATING, None)
            await page.navigate(search_url(request.engine, request.query))

            jitter = self._rng.randint(self.config.jitter_min_ms, self.config.jitter_max_ms)
            await page.wait(jitter)

            self._trace(request, CaptureState.WAITING_NETWORK_IDLE, None)
            await page.wait_network_idle()

            if self._cancelled():
                raise CaptureCancelled(f"Cancelled while capturing '{request.query}'")

            self._trace(request, CaptureState.CAPTCHA_CHECK, None)
            if self.captcha_detector(await page.content()):
                if not self.session.persistent:
                    return False
                # The page is captured after the wait whether or not it was solved.
                self._trace(request, CaptureState.CAPTCHA_WAIT, None)
                logger.warning(
                    f"[Pipeline] CAPTCHA detected for query \"{request.query}\". Please solve it "
                    f"in the Chrome window; waiting {self.config.captcha_wait:g} seconds..."
                )
                await page.wait(self.config.captcha_wait * 1000)

            await page.wait(self.delay * 1000)

            self._trace(request, CaptureState.CAPTURING, None)
            clip = self._clip_for(page, request.device)
            data = await page.screenshot(clip, self.quality)
            if not data:
                raise CaptureError(f"Empty screenshot for '{request.query}'")
            file_path.write_bytes(data)
            logger.debug(f"[Pipeline] Wrote {len(data)} bytes ({clip.width}x{clip.height}) to {file_path.name}")
            return True
        finally:
            await self._close_page(page)

    def _clip_for(self, page: BasePage, device: DeviceMode) -> ClipRect:
        if device is DeviceMode.MOBILE:
            width = page.viewport_width() or MOBILE_FALLBACK_WIDTH
        else:
            width = DESKTOP_WIDTH
        return ClipRect(x=0, y=0, width=width, height=self.config.viewport_height)

    @staticmethod
    async def _close_page(page: BasePage) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.warning(f"[Pipeline] Page close failed: {e}")

    def _cancelled_result(self, request: CaptureRequest, attempts: int) -> CaptureResult:
        return CaptureResult(
            request=request,
            outcome=CaptureOutcome.CANCELLED,
            attempts=attempts,
            error="cancelled",
        )

    @staticmethod
    def _trace(request: CaptureRequest, state: CaptureState, attempt: Optional[int]) -> None:
        suffix = f" (attempt {attempt})" if attempt is not None else ""
        logger.debug(f"[Pipeline] #{request.sequence_index + 1} -> {state.value}{suffix}")
