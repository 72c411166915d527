"""Reduce Claude Code JSONL session logs into SessionSummary models."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Iterable

from tokendash.model_identity import model_display_name
from tokendash.models import Exchange, SessionSummary, UsageCounts, UserPrompt
from tokendash.observability import record_derivation, start_span
from tokendash.parsers.records import RawRecord, RecordKind, iter_records

logger = logging.getLogger("tokendash.parser")

# Wrappers Claude Code puts around slash-command plumbing; never human input.
_COMMAND_MARKERS = (
    "<local-command",
    "<command-name>",
    "<local-command-stdout>",
    "<local-command-caveat>",
)


def _coerce_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _first_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def extract_text_content(content: Any) -> str:
    """Concatenate the text items of a message content payload in order."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            str(item.get("text") or "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        )
    return ""


def _is_tool_result_only(content: Any) -> bool:
    return (
        isinstance(content, list)
        and len(content) > 0
        and all(isinstance(item, dict) and item.get("type") == "tool_result" for item in content)
    )


def _has_command_markup(text: str) -> bool:
    return any(marker in text for marker in _COMMAND_MARKERS)


def _prompt_from_record(record: RawRecord) -> UserPrompt | None:
    """Return the human prompt carried by a user record, or None for plumbing."""
    entry = record.payload
    if entry.get("isMeta"):
        return None

    content = record.message.get("content")
    if _is_tool_result_only(content):
        return None

    text = extract_text_content(content)
    if not text.strip():
        return None
    if _has_command_markup(text):
        return None

    return UserPrompt(
        uuid=_first_str(entry.get("uuid")),
        timestamp=_first_str(entry.get("timestamp")),
        content=text,
        isCompactSummary=bool(entry.get("isCompactSummary")),
    )


def _usage_from_message(message: dict[str, Any]) -> UsageCounts:
    usage = message.get("usage") or {}
    return UsageCounts(
        input=_coerce_count(usage.get("input_tokens")),
        cacheRead=_coerce_count(usage.get("cache_read_input_tokens")),
        cacheCreated=_coerce_count(usage.get("cache_creation_input_tokens")),
        output=_coerce_count(usage.get("output_tokens")),
    )


def reduce_records(records: Iterable[RawRecord]) -> SessionSummary:
    """Fold decoded records into a SessionSummary.

    A single pending-prompt slot carries the most recent real human message
    forward to the next assistant record with usage. A newer prompt replaces
    an unconsumed older one.
    """
    session_id: str | None = None
    slug: str | None = None
    model: str | None = None
    version: str | None = None
    exchanges: list[Exchange] = []
    totals = UsageCounts()
    compact_count = 0
    compact_pre_tokens: int | None = None

    pending: UserPrompt | None = None

    for record in records:
        entry = record.payload

        if record.kind is RecordKind.COMPACT_BOUNDARY:
            compact_count += 1
            metadata = entry.get("compactMetadata")
            if isinstance(metadata, dict) and metadata.get("preTokens"):
                compact_pre_tokens = _coerce_count(metadata.get("preTokens"))
            continue

        if record.kind is RecordKind.USER:
            prompt = _prompt_from_record(record)
            if prompt is not None:
                pending = prompt
            continue

        if record.kind is RecordKind.ASSISTANT:
            message = record.message
            message_model = _first_str(message.get("model"))

            session_id = session_id or _first_str(entry.get("sessionId"))
            model = model or message_model
            slug = slug or _first_str(entry.get("slug"))
            version = version or _first_str(entry.get("version"))

            usage = _usage_from_message(message)
            service_tier = (message.get("usage") or {}).get("service_tier")
            exchanges.append(
                Exchange(
                    uuid=_first_str(entry.get("uuid")),
                    requestId=_first_str(entry.get("requestId")),
                    timestamp=_first_str(entry.get("timestamp")),
                    model=message_model,
                    usage=usage,
                    userMessage=pending,
                    response=extract_text_content(message.get("content")),
                    serviceTier=_first_str(service_tier),
                )
            )
            totals = totals + usage
            pending = None

    return SessionSummary(
        sessionId=session_id,
        slug=slug,
        model=model,
        modelDisplayName=model_display_name(model),
        version=version,
        exchanges=exchanges,
        totals=totals,
        compactCount=compact_count,
        compactPreTokens=compact_pre_tokens,
    )


def parse_session_text(text: str) -> SessionSummary:
    """Reduce the full JSONL text of a session log."""
    return reduce_records(iter_records(text))


def unreadable_summary() -> SessionSummary:
    return SessionSummary(readError=True)


def parse_session_file(path: Path | str) -> SessionSummary:
    """Read and reduce a session log.

    Read failures (missing file, permissions, a lock held by the writer)
    return an error-marked summary instead of raising.
    """
    path = Path(path)
    started = time.perf_counter()
    with start_span("session.derive", {"session.path": str(path)}):
        try:
            # errors="replace" keeps a half-written multibyte tail from failing the read
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Cannot read session log {path}: {e}")
            record_derivation("read_error", (time.perf_counter() - started) * 1000)
            return unreadable_summary()

        summary = parse_session_text(text)
    record_derivation("ok", (time.perf_counter() - started) * 1000)
    return summary
