"""Run-wide identity index used to keep one record per real-world place."""

import re
from typing import Optional, Set

from harvester.core.models import CandidateRecord

_WHITESPACE = re.compile(r"\s+")


def normalize(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", (value or "").lower().strip())


def dedup_key(record: CandidateRecord) -> str:
    return f"{normalize(record.business_name)}|{normalize(record.address)}"


class DedupIndex:
    """Set of dedup keys claimed so far in a run.

    One instance spans every query of a run and is never cleared in between.
    """

    def __init__(self) -> None:
        self._keys: Set[str] = set()

    def claim(self, key: str) -> bool:
        """Record `key`; return False when it was already claimed."""
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)
