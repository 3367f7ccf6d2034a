# serpshot/naming.py
from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote
import logging
import re

from .types import DeviceMode, Engine


logger = logging.getLogger(__name__)

SEARCH_URL_TEMPLATES = {
    Engine.GOOGLE: "https://www.google.com/search?q={query}",
    Engine.BING: "https://www.bing.com/search?q={query}",
    Engine.DUCKDUCKGO: "https://duckduckgo.com/?q={query}",
    Engine.YAHOO: "https://search.yahoo.com/search?p={query}",
}
DEFAULT_ENGINE = Engine.YAHOO

MAX_QUERY_SLUG = 40
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9 _]")


def search_url(engine: Union[Engine, str], query: str) -> str:
    """Build the results-page URL for a query; unknown engines use Yahoo."""
    template = SEARCH_URL_TEMPLATES.get(Engine.parse(engine), SEARCH_URL_TEMPLATES[DEFAULT_ENGINE])
    return template.format(query=quote(query, safe=""))


def sanitize_query(query: str) -> str:
    """Filename-safe slug: unsafe chars become '_', max 40 chars."""
    return _UNSAFE_CHARS.sub("_", query)[:MAX_QUERY_SLUG].strip()


def build_filename(
    sequence_index: int,
    engine: Union[Engine, str],
    device: Union[DeviceMode, str],
    query: str,
) -> str:
    engine_name = engine.value if isinstance(engine, Engine) else str(engine)
    device_name = device.value if isinstance(device, DeviceMode) else str(device)
    return f"{sequence_index + 1:03d}_{engine_name}_{device_name}_{sanitize_query(query)}.jpg"


def run_timestamp(now: Optional[datetime] = None) -> str:
    """
    ISO-8601 UTC timestamp made safe for directory names.

    2024-05-01T13:25:01.123Z becomes 2024-05-01-132501.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%d-%H%M%S")


def run_directory(output: Union[str, Path], timestamp: str, engine: Union[Engine, str]) -> Path:
    """
    Create and return a fresh run directory `{output}/{timestamp}--{engine}`.

    If that directory already exists a numeric suffix is added, so two runs
    never write into the same place.
    """
    engine_name = engine.value if isinstance(engine, Engine) else str(engine)
    base = Path(output) / f"{timestamp}--{engine_name}"
    base.parent.mkdir(parents=True, exist_ok=True)

    candidate = base
    suffix = 2
    while True:
        try:
            candidate.mkdir()
            break
        except FileExistsError:
            candidate = base.with_name(f"{base.name}-{suffix}")
            suffix += 1

    if candidate != base:
        logger.warning(f"[Naming] {base} already exists, using {candidate}")
    return candidate
