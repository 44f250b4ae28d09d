"""Utilities for turning a rendered place panel into a candidate record."""

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from harvester.core.models import CandidateRecord
from harvester.core.site_enricher import first_email, sanitize_website

logger = logging.getLogger(__name__)

CLOSED_PHRASES = ("permanently closed", "closed permanently")

_RATING_REGEX = re.compile(r"(\d+(?:[.,]\d+)?)")
_REVIEWS_REGEX = re.compile(r"\((\d[\d,.\s]*)\)")
_PHONE_REGEX = re.compile(r"\+?\(?\d[\d\s().\-]{5,}\d")
# Material icon glyphs rendered inline with panel text.
_PRIVATE_USE = re.compile(r"[\ue000-\uf8ff]")


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = _PRIVATE_USE.sub("", str(value)).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def parse_rating(text: Optional[str]) -> Optional[float]:
    if not text:
        return None
    match = _RATING_REGEX.search(text)
    if not match:
        return None
    rating = _safe_float(match.group(1).replace(",", "."))
    if rating is None or not 0 <= rating <= 5:
        return None
    return rating


def parse_reviews_count(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = _REVIEWS_REGEX.search(text)
    if not match:
        return None
    return _safe_int(match.group(1))


def parse_phone(label: Optional[str]) -> Optional[str]:
    if not label:
        return None
    match = _PHONE_REGEX.search(label)
    return match.group(0).strip() if match else None


def unwrap_website(href: Optional[str]) -> Optional[str]:
    """Resolve Google's /url?q= redirect links to the target site."""
    href = _strip_or_none(href)
    if not href:
        return None
    if "/url?" in href:
        target = parse_qs(urlparse(href).query).get("q")
        if target:
            href = target[0]
    return sanitize_website(href)


def is_closed(full_text: Optional[str]) -> bool:
    lowered = (full_text or "").lower()
    return any(phrase in lowered for phrase in CLOSED_PHRASES)


def to_candidate_record(raw: Optional[Dict[str, Any]]) -> Optional[CandidateRecord]:
    """Build a CandidateRecord from the dict produced by the place panel script.

    Returns None when no business name can be derived. Every other field is
    best-effort and left as None when it cannot be parsed.
    """
    if not raw:
        return None

    name = _strip_or_none(raw.get("name"))
    if not name:
        return None

    full_text = raw.get("full_text") or ""
    rating_text = _strip_or_none(raw.get("rating_text"))

    return CandidateRecord(
        business_name=name,
        address=_strip_or_none(raw.get("address_text")),
        phone=parse_phone(raw.get("phone_label")),
        website=unwrap_website(raw.get("website_href")),
        rating=parse_rating(rating_text),
        reviews_count=parse_reviews_count(rating_text),
        category=_strip_or_none(raw.get("category")),
        price_level=_strip_or_none(raw.get("price_level")),
        plus_code=_strip_or_none(raw.get("plus_code")),
        email=first_email(full_text),
        closed=is_closed(full_text),
    )
