"""Sender-domain allow-list that decides whether a message gets forwarded."""

from __future__ import annotations

import logging
from typing import AbstractSet, Iterable

from .utils import sender_domain, split_domains

logger = logging.getLogger(__name__)


def parse_allow_list(value: str | None) -> frozenset[str] | None:
    """Parse ALLOWED_SENDER_DOMAINS; None or blank disables filtering."""
    if value is None or not value.strip():
        return None
    return frozenset(split_domains(value))


def should_forward(sender_address: str | None, allow_list: AbstractSet[str] | None) -> bool:
    """Return True if a message from ``sender_address`` qualifies for forwarding."""
    if allow_list is None:
        return True
    domain = sender_domain(sender_address)
    if domain is None:
        return False
    return domain in allow_list


class SenderFilter:
    """Evaluate the sender allow-list and log why messages are skipped."""

    def __init__(self, allowed_domains: Iterable[str] | None) -> None:
        if allowed_domains is None:
            self.allow_list = None
        else:
            self.allow_list = frozenset(
                domain.strip().casefold() for domain in allowed_domains if domain.strip()
            )

    @property
    def enabled(self) -> bool:
        return self.allow_list is not None

    def should_forward(self, sender_address: str | None) -> bool:
        allowed = should_forward(sender_address, self.allow_list)
        if allowed or not self.enabled:
            return allowed

        domain = sender_domain(sender_address)
        if not sender_address:
            logger.info("No sender address found, skipping email")
        elif domain is None:
            logger.info("Invalid sender email format: %s", sender_address)
        else:
            logger.info(
                "Email from %s (domain: %s) not in allowed domains: %s",
                sender_address,
                domain,
                ", ".join(sorted(self.allow_list)),
            )
        return False
