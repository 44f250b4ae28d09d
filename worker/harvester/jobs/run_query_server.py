"""HTTP entrypoint that triggers harvest runs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request

from harvester.core.config import get_settings
from harvester.core.models import RunInput, ValidationError, parse_run_input
from harvester.core.site_enricher import EmailEnricher, sanitize_website
from harvester.jobs.run_query import run_harvest

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# One worker: runs share a browser profile and must never overlap.
_executor = ThreadPoolExecutor(max_workers=1)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never opens a browser."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "output_sink": settings.output_sink,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/harvest")
def enqueue_harvest() -> Any:
    """
    Validate a run input document and enqueue the harvest.
    Required JSON fields: queries[{searchTerm, location}]
    Optional: language, skipClosedPlaces, minRating, requireWebsite, filterMode
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    try:
        run_input = parse_run_input(payload)
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    logger.info("Queueing harvest run: queries=%s filter_mode=%s", len(run_input.queries), run_input.filter_mode)
    _executor.submit(_run_job_safe, run_input)

    return jsonify({"data": {"status": "queued", "queries": len(run_input.queries)}}), 202


@app.post("/enrich")
def enrich_website() -> Any:
    """Look up a contact email on a single homepage."""

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    raw_website = payload.get("website")
    website = sanitize_website(raw_website) if isinstance(raw_website, str) else None

    if not website:
        return jsonify({"error": "a valid website is required"}), 400

    with EmailEnricher() as enricher:
        email = enricher.enrich(website)

    return jsonify({"data": {"website": website, "email": email}}), 200


# ---------- Internals ----------


def _run_job_safe(run_input: RunInput) -> None:
    try:
        run_harvest(run_input)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Harvest run failed: %s", exc)


def main() -> None:
    """Bind on PORT when the platform injects it, else WORKER_PORT."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
