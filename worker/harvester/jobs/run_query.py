"""CLI job that harvests Google Maps results for an ordered list of queries."""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from harvester.core.config import ConfigError, Settings, get_settings
from harvester.core.dedup import DedupIndex
from harvester.core.extractor import PlaceExtractor
from harvester.core.feed_harvester import Enricher, Extractor, FeedHarvester, FeedSource, HarvestResult
from harvester.core.models import FILTER_MODES, RunInput, ValidationError, parse_run_input
from harvester.core.sink import Sink, build_sink
from harvester.core.site_enricher import EmailEnricher
from harvester.etl.filters import FilterPipeline
from harvester.vendors.google_maps import GoogleMapsFeed

logger = logging.getLogger(__name__)

BANNER = "=" * 80


@dataclass
class RunSummary:
    results: List[HarvestResult] = field(default_factory=list)
    total_extracted: int = 0
    unique_places: int = 0


def run_queries(
    run_input: RunInput,
    *,
    feed: FeedSource,
    extractor: Extractor,
    sink: Sink,
    enricher: Optional[Enricher] = None,
    settings: Optional[Settings] = None,
) -> RunSummary:
    """Harvest every query in input order, one at a time, against a shared dedup index."""
    if not run_input.queries:
        raise ValidationError("queries array is required and must not be empty")

    settings = settings or get_settings()
    dedup_index = DedupIndex()
    pipeline = FilterPipeline.from_run_input(run_input)
    summary = RunSummary()
    total = len(run_input.queries)

    logger.info(
        "Run input: queries=%s language=%s skip_closed_places=%s min_rating=%s require_website=%s filter_mode=%s",
        total,
        run_input.language,
        run_input.skip_closed_places,
        run_input.min_rating,
        run_input.require_website,
        run_input.filter_mode,
    )

    for query in run_input.queries:
        logger.info(BANNER)
        logger.info("Processing Query %s/%s", query.index, total)
        logger.info('Search: "%s" | Location: "%s"', query.search_term, query.location)
        logger.info(BANNER)

        harvester = FeedHarvester(
            feed,
            extractor,
            dedup_index,
            pipeline,
            sink,
            enricher=enricher,
            filter_mode=run_input.filter_mode,
            settings=settings,
        )
        result = harvester.run(query)
        summary.results.append(result)
        summary.total_extracted += result.places_extracted

        logger.info(
            "Completed Query %s/%s: places_extracted=%s items_discovered=%s duplicates=%s stop=%s total=%s",
            query.index,
            total,
            result.places_extracted,
            result.items_discovered,
            result.duplicates,
            result.stop_reason,
            summary.total_extracted,
        )

    summary.unique_places = len(dedup_index)
    logger.info(BANNER)
    logger.info("Total queries processed: %s", total)
    logger.info("Total unique places extracted: %s", summary.total_extracted)
    logger.info("Places in dedup index: %s", summary.unique_places)
    logger.info(BANNER)
    return summary


def run_harvest(run_input: RunInput, *, settings: Optional[Settings] = None, output_path: Optional[str] = None) -> RunSummary:
    """Wire the browser feed, enricher and configured sink, then run every query."""
    settings = settings or get_settings()
    sink = build_sink(settings, output_path)
    try:
        with GoogleMapsFeed(settings=settings, language=run_input.language) as feed:
            renderer = feed.renderer() if settings.enrich_use_js_renderer else None
            with EmailEnricher(settings=settings, renderer=renderer) as enricher:
                return run_queries(
                    run_input,
                    feed=feed,
                    extractor=PlaceExtractor(feed),
                    sink=sink,
                    enricher=enricher,
                    settings=settings,
                )
    finally:
        sink.close()


def _parse_query_arg(value: str) -> Dict[str, str]:
    search_term, sep, location = value.partition("|")
    if not sep:
        raise argparse.ArgumentTypeError("--query must look like 'searchTerm|location'")
    return {"searchTerm": search_term.strip(), "location": location.strip()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Harvest Google Maps places for a list of queries")
    parser.add_argument("--input", dest="input_path", help="Run input JSON file ('-' for stdin)")
    parser.add_argument(
        "--query",
        dest="queries",
        action="append",
        type=_parse_query_arg,
        default=[],
        help="Query as 'searchTerm|location'; may be repeated and is appended after --input queries",
    )
    parser.add_argument("--language", dest="language", help="Results language hint (default: en)")
    parser.add_argument(
        "--include-closed",
        dest="skip_closed_places",
        action="store_false",
        default=None,
        help="Do not flag permanently closed places",
    )
    parser.add_argument("--min-rating", dest="min_rating", type=float, help="Minimum rating (1-5)")
    parser.add_argument(
        "--require-website",
        dest="require_website",
        action="store_true",
        default=None,
        help="Flag places without a website",
    )
    parser.add_argument("--filter-mode", dest="filter_mode", choices=FILTER_MODES, help="annotate or gate")
    parser.add_argument("--output", dest="output_path", help="Override OUTPUT_PATH for the JSONL sink")
    return parser


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge the input document with command-line overrides."""
    payload: Dict[str, Any] = {}
    if args.input_path:
        if args.input_path == "-":
            payload = json.load(sys.stdin)
        else:
            with open(args.input_path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        if not isinstance(payload, dict):
            raise ValidationError("Input document must be a JSON object")

    if args.queries:
        payload["queries"] = list(payload.get("queries") or []) + args.queries

    overrides = {
        "language": args.language,
        "skipClosedPlaces": args.skip_closed_places,
        "minRating": args.min_rating,
        "requireWebsite": args.require_website,
        "filterMode": args.filter_mode,
    }
    payload.update({key: value for key, value in overrides.items() if value is not None})
    return payload


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_input = parse_run_input(build_payload(args))
        settings = get_settings()
    except (ValidationError, ConfigError) as exc:
        logger.error("Invalid input: %s", exc)
        raise SystemExit(2) from exc
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Unable to read input: %s", exc)
        raise SystemExit(2) from exc

    try:
        run_harvest(run_input, settings=settings, output_path=args.output_path)
    except Exception as exc:  # pragma: no cover - CLI fallback
        logger.error("Harvest run failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
