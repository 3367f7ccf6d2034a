"""
tests/test_pipeline.py

Capture state machine and batch scheduler, driven through in-memory
browser/page fakes. No network, no real browser.
"""

from __future__ import annotations

import asyncio
import random
from pathlib import Path

import pytest

from conftest import FAKE_JPEG, FakeBrowser
from serpshot.pipeline import CapturePipeline
from serpshot.queries import build_requests
from serpshot.run_context import CaptureSession
from serpshot.types import CaptureOutcome, DeviceMode, Engine


def _session(tmp_path: Path, browser: FakeBrowser, engine=Engine.YAHOO, device=DeviceMode.MOBILE) -> CaptureSession:
    return CaptureSession(engine=engine, device=device, output_dir=tmp_path, browser=browser)


def _pipeline(session, config, sleep, **kwargs) -> CapturePipeline:
    return CapturePipeline(
        session,
        delay=kwargs.pop("delay", 1.0),
        quality=kwargs.pop("quality", 80),
        config=config,
        sleep=sleep,
        rng=random.Random(0),
        **kwargs,
    )


def _run(pipeline, requests):
    return asyncio.run(pipeline.run(requests))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_every_request_yields_one_successful_result(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests(["foo", "bar", "baz qux"], Engine.YAHOO, DeviceMode.MOBILE)

    results = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert len(results) == 3
    assert [r.request for r in results] == requests
    assert all(r.outcome is CaptureOutcome.SUCCESS for r in results)
    assert all(r.attempts == 1 for r in results)
    assert all(r.error is None for r in results)
    assert [r.file_path.name for r in results] == [
        "001_yahoo_mobile_foo.jpg",
        "002_yahoo_mobile_bar.jpg",
        "003_yahoo_mobile_baz qux.jpg",
    ]
    for result in results:
        assert result.file_path.read_bytes() == FAKE_JPEG


def test_pages_are_always_closed(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"bad": "always_fail", "flaky": ["fail"], "bot": "always_captcha"})
    requests = build_requests(["ok", "bad", "flaky", "bot"], Engine.YAHOO, DeviceMode.MOBILE)

    _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert browser.opened == browser.closed
    assert browser.active == 0


def test_urls_follow_engine_template(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests(["a&b c"], Engine.BING, DeviceMode.DESKTOP)

    _run(_pipeline(_session(tmp_path, browser, Engine.BING, DeviceMode.DESKTOP), config, no_sleep), requests)

    assert browser.urls == ["https://www.bing.com/search?q=a%26b%20c"]


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


def test_failing_request_uses_every_retry(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"broken": "always_fail"})
    requests = build_requests(["broken"], Engine.YAHOO, DeviceMode.MOBILE)

    (result,) = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert result.outcome is CaptureOutcome.FAILED
    assert result.attempts == config.max_retries + 1
    assert result.error == "boom"
    assert result.file_path is None
    assert browser.opened == 3
    # Backoff between attempts only, not after the last one.
    assert no_sleep.calls == [1.0, 1.0]


def test_zero_retries_means_single_attempt(tmp_path, config, no_sleep) -> None:
    config.max_retries = 0
    browser = FakeBrowser(plan={"broken": "always_fail"})
    requests = build_requests(["broken"], Engine.YAHOO, DeviceMode.MOBILE)

    (result,) = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert result.outcome is CaptureOutcome.FAILED
    assert result.attempts == 1
    assert no_sleep.calls == []


def test_transient_failure_recovers(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"flaky": ["fail"]})
    requests = build_requests(["flaky"], Engine.YAHOO, DeviceMode.MOBILE)

    (result,) = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert result.outcome is CaptureOutcome.SUCCESS
    assert result.attempts == 2
    assert result.file_path.exists()
    assert no_sleep.calls == [1.0]


def test_one_failure_does_not_abort_the_batch(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"broken": "always_fail"})
    requests = build_requests(["first", "broken", "last"], Engine.YAHOO, DeviceMode.MOBILE)

    results = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert [r.outcome for r in results] == [
        CaptureOutcome.SUCCESS,
        CaptureOutcome.FAILED,
        CaptureOutcome.SUCCESS,
    ]
    assert results[1].request.query == "broken"


# ---------------------------------------------------------------------------
# CAPTCHA handling
# ---------------------------------------------------------------------------


def test_headless_captcha_consumes_retries_without_backoff(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"bot": "always_captcha"})
    requests = build_requests(["bot"], Engine.GOOGLE, DeviceMode.MOBILE)

    pipeline = _pipeline(_session(tmp_path, browser, Engine.GOOGLE), config, no_sleep, delay=2.5)

    (result,) = _run(pipeline, requests)

    assert result.outcome is CaptureOutcome.FAILED
    assert result.attempts == 3
    assert result.error == "CAPTCHA detected"
    assert browser.screenshots == []
    assert no_sleep.calls == []
    # No pre-capture delay is waited out on a CAPTCHA page.
    assert 2500 not in browser.waits


def test_headless_captcha_then_clean_page_succeeds(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(plan={"bot": ["captcha"]})
    requests = build_requests(["bot"], Engine.GOOGLE, DeviceMode.MOBILE)

    (result,) = _run(_pipeline(_session(tmp_path, browser, Engine.GOOGLE), config, no_sleep), requests)

    assert result.outcome is CaptureOutcome.SUCCESS
    assert result.attempts == 2


def test_persistent_captcha_waits_then_captures_anyway(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(persistent=True, plan={"bot": "always_captcha"})
    requests = build_requests(["bot"], Engine.GOOGLE, DeviceMode.MOBILE)

    (result,) = _run(_pipeline(_session(tmp_path, browser, Engine.GOOGLE), config, no_sleep), requests)

    assert result.outcome is CaptureOutcome.SUCCESS
    assert result.attempts == 1
    assert 30000 in browser.waits
    assert len(browser.screenshots) == 1


def test_captcha_detector_is_injectable(tmp_path, config, no_sleep) -> None:
    seen = []

    def detector(content: str) -> bool:
        seen.append(content)
        return True

    browser = FakeBrowser()
    requests = build_requests(["anything"], Engine.YAHOO, DeviceMode.MOBILE)
    pipeline = _pipeline(_session(tmp_path, browser), config, no_sleep, captcha_detector=detector)

    (result,) = _run(pipeline, requests)

    assert result.outcome is CaptureOutcome.FAILED
    assert len(seen) == 3


# ---------------------------------------------------------------------------
# Waits and clip geometry
# ---------------------------------------------------------------------------


def test_waits_jitter_then_delay(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests(["foo"], Engine.YAHOO, DeviceMode.MOBILE)

    _run(_pipeline(_session(tmp_path, browser), config, no_sleep, delay=2.5), requests)

    jitter, delay = browser.waits
    assert config.jitter_min_ms <= jitter <= config.jitter_max_ms
    assert delay == 2500


def test_mobile_clip_uses_viewport_width(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(width=390)
    requests = build_requests(["foo"], Engine.YAHOO, DeviceMode.MOBILE)

    _run(_pipeline(_session(tmp_path, browser), config, no_sleep, quality=55), requests)

    ((clip, quality),) = browser.screenshots
    assert (clip.x, clip.y, clip.width, clip.height) == (0, 0, 390, 1800)
    assert quality == 55


def test_mobile_clip_falls_back_when_viewport_unknown(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(width=None)
    requests = build_requests(["foo"], Engine.YAHOO, DeviceMode.MOBILE)

    _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    ((clip, _),) = browser.screenshots
    assert clip.width == 390


def test_desktop_clip_is_full_width(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(width=1920)
    requests = build_requests(["foo"], Engine.YAHOO, DeviceMode.DESKTOP)

    _run(_pipeline(_session(tmp_path, browser, device=DeviceMode.DESKTOP), config, no_sleep), requests)

    ((clip, _),) = browser.screenshots
    assert (clip.width, clip.height) == (1920, 1800)


# ---------------------------------------------------------------------------
# Batch scheduler
# ---------------------------------------------------------------------------


def test_headless_batches_never_exceed_three_in_flight(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests([f"q{i}" for i in range(7)], Engine.YAHOO, DeviceMode.MOBILE)

    results = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert len(results) == 7
    assert browser.max_active == 3


def test_persistent_mode_runs_one_at_a_time(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser(persistent=True)
    pipeline = _pipeline(_session(tmp_path, browser, Engine.GOOGLE), config, no_sleep)
    requests = build_requests([f"q{i}" for i in range(4)], Engine.GOOGLE, DeviceMode.MOBILE)

    results = _run(pipeline, requests)

    assert pipeline.batch_size == 1
    assert len(results) == 4
    assert browser.max_active == 1


def test_results_attributed_to_their_request_regardless_of_finish_order(tmp_path, config, no_sleep) -> None:
    # "slow" needs two extra attempts, so it finishes after its batch-mates.
    browser = FakeBrowser(plan={"slow": ["fail", "fail"]})
    requests = build_requests(["slow", "fast", "faster"], Engine.YAHOO, DeviceMode.MOBILE)

    results = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    for request, result in zip(requests, results):
        assert result.request is request
        assert result.file_path.name.startswith(f"{request.sequence_index + 1:03d}_")
        assert request.query in result.file_path.name
    assert results[0].attempts == 3


def test_duplicate_queries_get_distinct_files(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests(["same", "same"], Engine.YAHOO, DeviceMode.MOBILE)

    results = _run(_pipeline(_session(tmp_path, browser), config, no_sleep), requests)

    assert results[0].file_path != results[1].file_path
    assert all(r.file_path.exists() for r in results)


def test_empty_request_list(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()

    assert _run(_pipeline(_session(tmp_path, browser), config, no_sleep), []) == []
    assert browser.opened == 0


# ---------------------------------------------------------------------------
# Cancellation and lifecycle
# ---------------------------------------------------------------------------


def test_cancel_before_run_marks_everything_cancelled(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests(["a", "b", "c", "d"], Engine.YAHOO, DeviceMode.MOBILE)

    async def scenario():
        event = asyncio.Event()
        event.set()
        pipeline = _pipeline(_session(tmp_path, browser), config, no_sleep, cancel_event=event)
        return await pipeline.run(requests)

    results = asyncio.run(scenario())

    assert len(results) == 4
    assert all(r.outcome is CaptureOutcome.CANCELLED for r in results)
    assert all(r.attempts == 0 for r in results)
    assert browser.opened == 0


def test_cancel_mid_run_skips_later_batches(tmp_path, config, no_sleep) -> None:
    browser = FakeBrowser()
    requests = build_requests([f"q{i}" for i in range(5)], Engine.YAHOO, DeviceMode.MOBILE)

    async def scenario():
        event = asyncio.Event()

        def detector(content: str) -> bool:
            event.set()
            return False

        pipeline = _pipeline(
            _session(tmp_path, browser), config, no_sleep, cancel_event=event, captcha_detector=detector
        )
        return await pipeline.run(requests)

    results = asyncio.run(scenario())

    assert len(results) == 5
    assert [r.request for r in results] == requests
    assert any(r.outcome is CaptureOutcome.SUCCESS for r in results[:3])
    for result in results[3:]:
        assert result.outcome is CaptureOutcome.CANCELLED
        assert result.attempts == 0
    assert browser.opened == browser.closed


def test_run_refused_once_session_is_closing(tmp_path, config, no_sleep) -> None:
    session = _session(tmp_path, FakeBrowser())
    session.closing = True
    requests = build_requests(["foo"], Engine.YAHOO, DeviceMode.MOBILE)

    with pytest.raises(RuntimeError):
        _run(_pipeline(session, config, no_sleep), requests)
