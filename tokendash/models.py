"""Pydantic models for session summaries and live stream messages."""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import Literal, Optional

# ── Usage ───────────────────────────────────────────────────────────

class UsageCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: int = Field(default=0, ge=0)
    cacheRead: int = Field(default=0, ge=0)
    cacheCreated: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)

    @computed_field
    @property
    def totalContext(self) -> int:
        return self.input + self.cacheRead + self.cacheCreated

    def __add__(self, other: UsageCounts) -> UsageCounts:
        return UsageCounts(
            input=self.input + other.input,
            cacheRead=self.cacheRead + other.cacheRead,
            cacheCreated=self.cacheCreated + other.cacheCreated,
            output=self.output + other.output,
        )


# ── Session-related models ──────────────────────────────────────────

class UserPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    uuid: Optional[str] = None
    timestamp: Optional[str] = None
    content: str = ""
    isCompactSummary: bool = False


class Exchange(BaseModel):
    model_config = ConfigDict(frozen=True)

    uuid: Optional[str] = None
    requestId: Optional[str] = None
    timestamp: Optional[str] = None
    model: Optional[str] = None
    usage: UsageCounts = Field(default_factory=UsageCounts)
    userMessage: Optional[UserPrompt] = None
    response: str = ""
    serviceTier: Optional[str] = None

    @computed_field
    @property
    def fromCompactSummary(self) -> bool:
        return bool(self.userMessage and self.userMessage.isCompactSummary)


class SessionSummary(BaseModel):
    sessionId: Optional[str] = None
    slug: Optional[str] = None
    model: Optional[str] = None
    modelDisplayName: str = ""
    version: Optional[str] = None
    exchanges: list[Exchange] = Field(default_factory=list)
    totals: UsageCounts = Field(default_factory=UsageCounts)
    compactCount: int = 0
    compactPreTokens: Optional[int] = None
    readError: bool = False


class Turn(BaseModel):
    """One human prompt and every assistant call made answering it."""

    model_config = ConfigDict(frozen=True)

    userMessage: Optional[UserPrompt] = None
    exchanges: list[Exchange] = Field(default_factory=list)

    @computed_field
    @property
    def usage(self) -> UsageCounts:
        total = UsageCounts()
        for exchange in self.exchanges:
            total = total + exchange.usage
        return total

    @computed_field
    @property
    def response(self) -> str:
        return self.exchanges[-1].response if self.exchanges else ""

    @computed_field
    @property
    def timestamp(self) -> Optional[str]:
        if self.userMessage and self.userMessage.timestamp:
            return self.userMessage.timestamp
        return self.exchanges[0].timestamp if self.exchanges else None


# ── Stream messages ─────────────────────────────────────────────────

class StreamMessage(BaseModel):
    type: Literal["init", "update"]
    data: SessionSummary

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"
