"""Quality filters applied to candidate records."""

from typing import Callable, List, Optional, Tuple

from harvester.core.models import (
    STATUS_CLOSED,
    STATUS_EXTRACTED,
    STATUS_LOW_RATING,
    STATUS_NO_WEBSITE,
    CandidateRecord,
    RunInput,
)

Predicate = Callable[[CandidateRecord], bool]


class FilterPipeline:
    """Ordered predicates; the first one that matches names the record's status."""

    def __init__(
        self,
        *,
        skip_closed_places: bool = True,
        require_website: bool = False,
        min_rating: Optional[float] = None,
    ) -> None:
        self.skip_closed_places = skip_closed_places
        self.require_website = require_website
        self.min_rating = min_rating

        self._rules: List[Tuple[str, Predicate]] = []
        if skip_closed_places:
            self._rules.append((STATUS_CLOSED, lambda record: record.closed))
        if require_website:
            self._rules.append((STATUS_NO_WEBSITE, lambda record: not record.website))
        if min_rating is not None:
            self._rules.append((STATUS_LOW_RATING, self._below_min_rating))

    @classmethod
    def from_run_input(cls, run_input: RunInput) -> "FilterPipeline":
        return cls(
            skip_closed_places=run_input.skip_closed_places,
            require_website=run_input.require_website,
            min_rating=run_input.min_rating,
        )

    def _below_min_rating(self, record: CandidateRecord) -> bool:
        return record.rating is None or record.rating < self.min_rating

    def evaluate(self, record: CandidateRecord) -> str:
        for status, predicate in self._rules:
            if predicate(record):
                return status
        return STATUS_EXTRACTED
