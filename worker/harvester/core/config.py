"""Application configuration helpers.

Process-level knobs (browser timeouts, scroll pacing, sink selection) come from
the environment only. Per-run options such as the query list live in the run
input document, see `harvester.core.models.parse_run_input`.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SINK_JSONL = "jsonl"
SINK_POSTGRES = "postgres"


class ConfigError(RuntimeError):
    """Raised when an environment value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    headless: bool = True
    navigation_timeout_ms: int = 60000
    feed_wait_timeout_ms: int = 15000
    feed_settle_ms: int = 3000
    scroll_delay_ms: int = 2000
    detail_delay_ms: int = 3000
    max_scroll_attempts: int = 100
    no_new_results_threshold: int = 5
    query_timeout_seconds: int = 180
    max_request_retries: int = 3
    enrich_timeout_seconds: int = 15
    enrich_use_js_renderer: bool = False
    output_sink: str = SINK_JSONL
    output_path: str = "data/places.jsonl"
    database_url: str = ""
    worker_port: int = 9000


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    output_sink = os.getenv("OUTPUT_SINK", SINK_JSONL).strip().lower() or SINK_JSONL
    database_url = os.getenv("DATABASE_URL", "")

    if output_sink not in {SINK_JSONL, SINK_POSTGRES}:
        raise ConfigError(f"OUTPUT_SINK must be '{SINK_JSONL}' or '{SINK_POSTGRES}', got {output_sink!r}")
    if output_sink == SINK_POSTGRES and not database_url:
        logger.warning("OUTPUT_SINK=postgres but DATABASE_URL is not set; database writes will fail.")

    settings = Settings(
        headless=_get_bool_env("HEADLESS", True),
        navigation_timeout_ms=_get_int_env("NAVIGATION_TIMEOUT_MS", 60000),
        feed_wait_timeout_ms=_get_int_env("FEED_WAIT_TIMEOUT_MS", 15000),
        feed_settle_ms=_get_int_env("FEED_SETTLE_MS", 3000),
        scroll_delay_ms=_get_int_env("SCROLL_DELAY_MS", 2000),
        detail_delay_ms=_get_int_env("DETAIL_DELAY_MS", 3000),
        max_scroll_attempts=_get_int_env("MAX_SCROLL_ATTEMPTS", 100),
        no_new_results_threshold=_get_int_env("NO_NEW_RESULTS_THRESHOLD", 5),
        query_timeout_seconds=_get_int_env("QUERY_TIMEOUT_SECONDS", 180),
        max_request_retries=_get_int_env("MAX_REQUEST_RETRIES", 3),
        enrich_timeout_seconds=_get_int_env("ENRICH_TIMEOUT_SECONDS", 15),
        enrich_use_js_renderer=_get_bool_env("ENRICH_USE_JS_RENDERER", False),
        output_sink=output_sink,
        output_path=os.getenv("OUTPUT_PATH", "data/places.jsonl"),
        database_url=database_url,
        worker_port=_get_int_env("WORKER_PORT", 9000),
    )

    if settings.max_scroll_attempts < 1:
        raise ConfigError("MAX_SCROLL_ATTEMPTS must be at least 1")
    if settings.no_new_results_threshold < 1:
        raise ConfigError("NO_NEW_RESULTS_THRESHOLD must be at least 1")

    return settings
