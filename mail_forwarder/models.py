"""Typed containers shared across the pipeline."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .utils import sender_domain


@dataclass(frozen=True)
class SourceMessage:
    """A message as listed from the source mailbox."""

    uid: str
    raw: bytes


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    content_id: Optional[str] = None


@dataclass
class ParsedMessage:
    """Decoded view of a SourceMessage, discarded after one attempt."""

    sender: str
    subject: str
    text: str
    html: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def sender_domain(self) -> str | None:
        return sender_domain(self.sender)


class ForwardOutcome(str, Enum):
    FORWARDED = "forwarded"
    FILTERED = "filtered"
    FAILED_TRANSIENT = "failed_transient"


class MessageState(str, Enum):
    """Terminal per-message states reached by one processing attempt."""

    DECODE_FAILED = "decode_failed"
    SEEN_MARKED = "seen_marked"
    FLAG_FAILED = "flag_failed"
    SEND_FAILED = "send_failed"
    DELETED = "deleted"
    DELETE_FAILED = "delete_failed"
    ERRORED = "errored"


@dataclass
class MessageResult:
    uid: str
    state: MessageState
    outcome: ForwardOutcome
    subject: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PassReport:
    """Results of one pass over the unseen messages."""

    results: list[MessageResult] = field(default_factory=list)

    def add(self, result: MessageResult) -> None:
        self.results.append(result)

    @property
    def counts(self) -> Counter:
        return Counter(result.outcome for result in self.results)

    @property
    def forwarded(self) -> int:
        return self.counts[ForwardOutcome.FORWARDED]

    @property
    def filtered(self) -> int:
        return self.counts[ForwardOutcome.FILTERED]

    @property
    def failed(self) -> int:
        return self.counts[ForwardOutcome.FAILED_TRANSIENT]
