# serpshot/captcha.py
"""Heuristic detection of bot-challenge interstitials in results pages."""
from __future__ import annotations
from typing import Callable, Tuple
import logging

from bs4 import BeautifulSoup


logger = logging.getLogger(__name__)

CaptchaDetector = Callable[[str], bool]

CAPTCHA_TEXT_MARKERS: Tuple[str, ...] = (
    "CAPTCHA",
    "unusual traffic",
    "verify you are a human",
)
CAPTCHA_SELECTORS: Tuple[str, ...] = (
    'iframe[src*="recaptcha"]',
    "div.g-recaptcha",
)


def detect_captcha(page_content: str) -> bool:
    """
    Return True when the page HTML looks like a CAPTCHA challenge.

    Text markers are matched against the visible body text only, so a
    results page that merely ships "captcha" in a script does not trip it.
    """
    if not page_content:
        return False

    soup = BeautifulSoup(page_content, "html.parser")
    # Narrower than the browser's body.textContent, which also includes inline
    # script text: a challenge page whose only marker sits in a <script> is
    # not flagged here unless it also carries a recaptcha element.
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    root = soup.body or soup
    text = root.get_text(" ")
    for marker in CAPTCHA_TEXT_MARKERS:
        if marker in text:
            logger.debug(f"[Captcha] Text marker matched: {marker!r}")
            return True

    for selector in CAPTCHA_SELECTORS:
        if soup.select_one(selector) is not None:
            logger.debug(f"[Captcha] Element matched: {selector}")
            return True

    return False
