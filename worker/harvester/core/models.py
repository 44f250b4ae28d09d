"""Core data models shared by the harvesting pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

FILTER_MODE_ANNOTATE = "annotate"
FILTER_MODE_GATE = "gate"
FILTER_MODES = (FILTER_MODE_ANNOTATE, FILTER_MODE_GATE)

STATUS_EXTRACTED = "extracted"
STATUS_CLOSED = "closed"
STATUS_NO_WEBSITE = "no_website"
STATUS_LOW_RATING = "low_rating"


class ValidationError(ValueError):
    """Raised when the run input document is malformed."""


@dataclass(frozen=True)
class Query:
    search_term: str
    location: str
    index: int


@dataclass(slots=True)
class CandidateRecord:
    """Snapshot of one place as lifted from a rendered feed item."""

    business_name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None
    category: Optional[str] = None
    price_level: Optional[str] = None
    plus_code: Optional[str] = None
    email: Optional[str] = None
    closed: bool = False


@dataclass(slots=True)
class AcceptedRecord:
    record: CandidateRecord
    query: Query
    filter_status: str = STATUS_EXTRACTED

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into the output document; the closed flag is folded into filter_status."""
        record = self.record
        return {
            "business_name": record.business_name,
            "address": record.address,
            "phone": record.phone,
            "website": record.website,
            "rating": record.rating,
            "reviews_count": record.reviews_count,
            "category": record.category,
            "price_level": record.price_level,
            "plus_code": record.plus_code,
            "email": record.email,
            "filter_status": self.filter_status,
            "query_searchTerm": self.query.search_term,
            "query_location": self.query.location,
            "query_index": self.query.index,
        }


@dataclass(frozen=True)
class RunInput:
    queries: Tuple[Query, ...]
    language: str = "en"
    skip_closed_places: bool = True
    min_rating: Optional[float] = None
    require_website: bool = False
    filter_mode: str = FILTER_MODE_ANNOTATE


def _require_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _parse_min_rating(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("minRating must be numeric")
    try:
        rating = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("minRating must be numeric") from exc
    if not 1 <= rating <= 5:
        raise ValidationError("minRating must be between 1 and 5")
    return rating


def _parse_queries(raw_queries: Any) -> Tuple[Query, ...]:
    if not isinstance(raw_queries, list) or not raw_queries:
        raise ValidationError("queries array is required and must not be empty")

    queries = []
    for position, raw in enumerate(raw_queries, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"query #{position} must be an object")
        search_term = raw.get("searchTerm")
        location = raw.get("location")
        if not isinstance(search_term, str) or not search_term.strip():
            raise ValidationError(f"query #{position} must have a searchTerm")
        if not isinstance(location, str) or not location.strip():
            raise ValidationError(f"query #{position} must have a location")
        queries.append(Query(search_term=search_term, location=location, index=position))
    return tuple(queries)


def parse_run_input(payload: Any) -> RunInput:
    """Validate a run input document and return an immutable RunInput.

    Every rule is checked before any harvesting starts so a bad document never
    produces a partial run.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Input is required")

    queries = _parse_queries(payload.get("queries"))

    language = payload.get("language", "en")
    if language is None:
        language = "en"
    if not isinstance(language, str) or not language.strip():
        raise ValidationError("language must be a non-empty string")

    filter_mode = payload.get("filterMode", FILTER_MODE_ANNOTATE) or FILTER_MODE_ANNOTATE
    if filter_mode not in FILTER_MODES:
        raise ValidationError(f"filterMode must be one of: {', '.join(FILTER_MODES)}")

    return RunInput(
        queries=queries,
        language=language.strip(),
        skip_closed_places=_require_bool(payload, "skipClosedPlaces", True),
        min_rating=_parse_min_rating(payload.get("minRating")),
        require_website=_require_bool(payload, "requireWebsite", False),
        filter_mode=filter_mode,
    )
