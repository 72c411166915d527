"""Observability helpers."""

from tokendash.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_derivation,
    record_decode_failures,
    record_delivery,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_derivation",
    "record_decode_failures",
    "record_delivery",
]
