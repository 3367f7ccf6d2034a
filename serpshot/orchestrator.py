# serpshot/orchestrator.py
from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union
import asyncio
import logging
import random

from .captcha import CaptchaDetector, detect_captcha
from .config import BASELINE_ENGINE, PERSISTENT_ENGINE, CaptureConfig, CaptureOptions
from .naming import run_directory, run_timestamp
from .pipeline import CapturePipeline, SleepFunc
from .queries import build_requests, read_queries
from .report import CompareReport, RunReport, write_manifest
from .run_context import BrowserFactory, open_session
from .types import CaptureOutcome, CaptureResult, Engine


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaptureOrchestrator:
    """Runs capture passes end to end: CSV in, screenshots and manifest out."""

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        *,
        browser_factory: Optional[BrowserFactory] = None,
        captcha_detector: CaptchaDetector = detect_captcha,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
        cancel_event: Optional[asyncio.Event] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.config = config or CaptureConfig()
        self.browser_factory = browser_factory
        self.captcha_detector = captcha_detector
        self.sleep = sleep
        self.rng = rng
        self.cancel_event = cancel_event
        self.clock = clock

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def run(self, options: CaptureOptions) -> Union[RunReport, CompareReport]:
        """Dispatch to compare mode or a single pass based on the options."""
        if options.compare_mode:
            return await self.run_compare_mode(options)
        return await self.generate_search_screenshots(options)

    async def generate_search_screenshots(
        self,
        options: CaptureOptions,
        queries: Optional[List[str]] = None,
    ) -> RunReport:
        """
        Run one full capture pass.

        Args:
            options: Per-run CLI options
            queries: Pre-extracted queries; read from options.csv_file if None

        Returns:
            RunReport with exactly one result per query
        """
        if queries is None:
            queries = read_queries(options.csv_file, options.column)

        now = self.clock()
        stamp = run_timestamp(now)
        report = RunReport(
            engine=options.engine,
            device=options.mode,
            output_dir=None,
            run_timestamp=stamp,
            persistent=options.persistent,
        )
        if not queries:
            logger.warning(f"No queries found in {options.csv_file}; nothing to capture")
            return report

        requests = build_requests(queries, options.engine, options.mode)
        if self._cancelled():
            logger.warning(f"Skipping {options.engine.value} pass: run was cancelled")
            report.results = [
                CaptureResult(request=r, outcome=CaptureOutcome.CANCELLED, attempts=0, error="cancelled")
                for r in requests
            ]
            return report

        report.output_dir = run_directory(options.output, stamp, options.engine)
        logger.info(f"Saving screenshots to: {report.output_dir}")

        async with open_session(
            options.engine,
            options.mode,
            report.output_dir,
            use_chrome=options.use_chrome,
            config=self.config,
            browser_factory=self.browser_factory,
            created_at=now,
        ) as session:
            pipeline = CapturePipeline(
                session,
                delay=options.delay,
                quality=options.quality,
                config=self.config,
                captcha_detector=self.captcha_detector,
                sleep=self.sleep,
                rng=self.rng,
                cancel_event=self.cancel_event,
            )
            report.results = await pipeline.run(requests)

        write_manifest(report)
        logger.info(f"All screenshots saved to: {report.output_dir}")
        return report

    async def run_compare_mode(self, options: CaptureOptions) -> CompareReport:
        """
        Capture the baseline engine, then the comparison engine.

        The passes run one after the other since they may share the same
        persistent profile directory. The baseline is always headless.
        """
        queries = read_queries(options.csv_file, options.column)
        logger.info(
            f"Running in compare mode: Capturing screenshots for "
            f"{BASELINE_ENGINE.value} and {options.engine.value}"
        )

        baseline_options = replace(options, engine=BASELINE_ENGINE, use_chrome=False, compare_mode=False)
        logger.info(f"Capturing {BASELINE_ENGINE.value} screenshots with headless browser")
        baseline = await self.generate_search_screenshots(baseline_options, queries)

        compare_engine = Engine.GOOGLE if options.engine is BASELINE_ENGINE else options.engine
        use_chrome = options.use_chrome if compare_engine is PERSISTENT_ENGINE else False
        compare_options = replace(options, engine=compare_engine, use_chrome=use_chrome, compare_mode=False)
        logger.info(
            f"Capturing {compare_engine.value} screenshots with "
            f"{'Chrome browser' if use_chrome else 'headless browser'}"
        )
        comparison = await self.generate_search_screenshots(compare_options, queries)

        logger.info(
            f"Compare mode complete. Screenshots captured for "
            f"{BASELINE_ENGINE.value} and {compare_engine.value}"
        )
        return CompareReport(baseline=baseline, comparison=comparison)
