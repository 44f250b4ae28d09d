"""Append-only destinations for accepted records."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from harvester.core.config import SINK_POSTGRES, Settings, get_settings
from harvester.core.models import AcceptedRecord

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def append(self, record: AcceptedRecord) -> None: ...


class JsonlSink:
    """Write one JSON document per line, in the order records are appended."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8")
        self.count = 0
        logger.info("Writing records to %s", self.path)

    def append(self, record: AcceptedRecord) -> None:
        self._handle.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        self._handle.flush()
        self.count += 1

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()

    def __enter__(self) -> "JsonlSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_sink(settings: Optional[Settings] = None, output_path: Optional[str] = None):
    """Return the sink selected by OUTPUT_SINK."""
    settings = settings or get_settings()
    if settings.output_sink == SINK_POSTGRES:
        from harvester.core.db import PostgresSink

        return PostgresSink()
    return JsonlSink(output_path or settings.output_path)
