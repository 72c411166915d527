"""Model identity parsing utilities for session display."""
from __future__ import annotations

import re


_VERSION_TOKEN_PATTERN = re.compile(r"^\d+$")
_DATE_SUFFIX_PATTERN = re.compile(r"(?:-\d{8}|-\d{4}-\d{2}-\d{2})+$")


def _title_case(value: str) -> str:
    return " ".join(part.capitalize() for part in (value or "").strip().split() if part.strip())


def _provider_label(token: str) -> str:
    lowered = (token or "").strip().lower()
    if lowered == "claude":
        return "Claude"
    if lowered in {"gpt", "openai"}:
        return "OpenAI"
    if lowered:
        return _title_case(lowered)
    return ""


def canonical_model_name(raw_model: str | None) -> str:
    """Return a canonical model identifier with build/date suffixes removed.

    Example:
      claude-opus-4-5-20251101 -> claude-opus-4-5
    """
    raw = (raw_model or "").strip().lower()
    if not raw:
        return ""
    normalized = re.sub(r"[\s_]+", "-", raw)
    normalized = re.sub(r"-{2,}", "-", normalized).strip("-")
    stripped = _DATE_SUFFIX_PATTERN.sub("", normalized).strip("-")
    return stripped or normalized


def model_display_name(raw_model: str | None) -> str:
    """Human-friendly label for a raw model id.

    claude-opus-4-5-20251101 -> "Claude Opus 4.5"
    claude-3-5-sonnet-20241022 -> "Claude 3.5"
    Unrecognized shapes fall back to the raw id.
    """
    raw = (raw_model or "").strip()
    if not raw:
        return ""
    if raw.startswith("<") and raw.endswith(">"):
        # Placeholder ids such as "<synthetic>" are shown as-is.
        return raw

    parts = [part for part in canonical_model_name(raw).split("-") if part]
    provider = _provider_label(parts[0]) if parts else ""

    family = ""
    rest = parts[1:]
    if rest and not _VERSION_TOKEN_PATTERN.match(rest[0]):
        family = _title_case(rest[0])
        rest = rest[1:]

    numbers: list[str] = []
    for token in rest:
        if not _VERSION_TOKEN_PATTERN.match(token):
            break
        numbers.append(token)
        if len(numbers) == 2:
            break

    display = " ".join(part for part in [provider, family, ".".join(numbers)] if part)
    return display or raw
