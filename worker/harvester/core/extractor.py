"""Turn rendered feed items into candidate records."""

import logging
from typing import Any, Optional

from harvester.core.models import CandidateRecord
from harvester.etl.transform import to_candidate_record

logger = logging.getLogger(__name__)


class PlaceExtractor:
    """Extract a CandidateRecord from one feed card via its detail panel.

    `feed` must provide `describe(item)` returning the raw panel fields (see
    `harvester.vendors.google_maps.GoogleMapsFeed.describe`). A failing item is
    logged and yields None so one malformed card never aborts a harvest.
    """

    def __init__(self, feed: Any) -> None:
        self.feed = feed

    def extract(self, item: Any) -> Optional[CandidateRecord]:
        try:
            raw = self.feed.describe(item)
            record = to_candidate_record(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to extract place details: %s", exc)
            return None

        if record is None:
            logger.debug("Feed item has no derivable business name; skipping")
            return None

        logger.info(
            "Extracted: %s | Phone: %s | Website: %s",
            record.business_name,
            record.phone or "N/A",
            record.website or "N/A",
        )
        return record
