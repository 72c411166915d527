"""Decode single JSONL log lines into typed records."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from tokendash.observability import record_decode_failures

logger = logging.getLogger("tokendash.parser")


class RecordKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    COMPACT_BOUNDARY = "compact_boundary"
    OTHER = "other"


@dataclass(frozen=True)
class RawRecord:
    kind: RecordKind
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> dict[str, Any]:
        value = self.payload.get("message")
        return value if isinstance(value, dict) else {}


class _Unparsable:
    """Sentinel returned for lines that are not JSON objects."""

    _instance: _Unparsable | None = None

    def __new__(cls) -> _Unparsable:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNPARSABLE"

    def __bool__(self) -> bool:
        return False


UNPARSABLE = _Unparsable()


def _classify(entry: dict[str, Any]) -> RecordKind:
    entry_type = entry.get("type")
    message = entry.get("message")
    if not isinstance(message, dict):
        message = {}

    if entry_type == "system" and entry.get("subtype") == "compact_boundary":
        return RecordKind.COMPACT_BOUNDARY
    if entry_type == "user" and message.get("role") == "user":
        return RecordKind.USER
    if entry_type == "assistant" and isinstance(message.get("usage"), dict):
        return RecordKind.ASSISTANT
    return RecordKind.OTHER


def decode_line(line: str) -> RawRecord | _Unparsable:
    """Decode one log line. Never raises; bad input yields ``UNPARSABLE``."""
    try:
        entry = json.loads(line)
    except Exception:
        return UNPARSABLE
    if not isinstance(entry, dict):
        return UNPARSABLE
    return RawRecord(kind=_classify(entry), payload=entry)


def iter_records(text: str) -> Iterator[RawRecord]:
    """Yield decoded records from JSONL text, skipping blank and malformed lines."""
    failures = 0
    for line in text.split("\n"):
        if not line.strip():
            continue
        record = decode_line(line)
        if record is UNPARSABLE:
            failures += 1
            continue
        yield record
    if failures:
        logger.debug("Skipped %d unparsable line(s)", failures)
        record_decode_failures(failures)
