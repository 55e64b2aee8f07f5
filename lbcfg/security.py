"""Sender checks applied by transports before the handler runs.

Key functions:
    is_authorized: Allow-list check for phone numbers and Signal UUIDs.
    check_rate_limit: Per-sender sliding window.
    sanitize_input: Drop control / bidi characters, cap the length.
    mask: Shorten a sender for logs.
"""

import re
import time
import unicodedata
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable

import structlog

logger = structlog.get_logger("lbcfg.security")

RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX_REQUESTS = 20  # commands per sender per window

MAX_INPUT_LENGTH = 1000

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Explicit/embedding/override and isolate controls
_BIDI_CHARS = frozenset("\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069")


def mask(sender: str) -> str:
    """Mask a phone number or UUID for logs ("...1234")."""
    return "..." + sender[-4:]


class _SlidingWindow:
    """Timestamps of recent requests per sender."""

    def __init__(self, window: float, limit: int):
        self.window = window
        self.limit = limit
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_prune = 0.0

    def allow(self, sender: str) -> bool:
        now = time.time()
        cutoff = now - self.window
        hits = self._hits[sender]
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if now - self._last_prune > 5 * self.window:
            self._last_prune = now
            for key in [k for k, v in self._hits.items() if not v or v[-1] <= cutoff]:
                if key != sender:
                    del self._hits[key]

        if len(hits) >= self.limit:
            logger.warning(
                "rate_limit_exceeded", sender=mask(sender), requests_in_window=len(hits),
            )
            return False
        hits.append(now)
        return True

    def clear(self) -> None:
        self._hits.clear()
        self._last_prune = 0.0


_limiter = _SlidingWindow(RATE_LIMIT_WINDOW, RATE_LIMIT_MAX_REQUESTS)


def check_rate_limit(sender: str) -> bool:
    """Record one request; False once the sender exceeded the window."""
    return _limiter.allow(sender)


def _reset_rate_limits():
    """Reset rate limit state (for testing)."""
    _limiter.clear()


def is_uuid(value: str) -> bool:
    return bool(_UUID_PATTERN.match(value))


def normalize_phone_number(phone: str) -> str:
    """Normalize a phone number to E.164 (``+`` followed by digits)."""
    return "+" + re.sub(r"\D", "", phone)


def is_authorized(sender: str, allowed: Iterable[str]) -> bool:
    """Check a sender (phone number or UUID) against the allow-list.

    Exact matches are accepted first; phone numbers are then compared
    in normalized form so formatting differences don't matter.
    """
    allowed = list(allowed)
    if sender in allowed:
        return True

    if not is_uuid(sender):
        numbers = {normalize_phone_number(a) for a in allowed if not is_uuid(a)}
        if normalize_phone_number(sender) in numbers:
            return True

    logger.warning("unauthorized_access_attempt", sender=mask(sender))
    return False


def sanitize_input(text: str) -> str:
    """Strip control and bidi-override characters and enforce a length limit."""
    kept = (
        ch for ch in text
        if ch in "\n\t"
        or (ch not in _BIDI_CHARS and not unicodedata.category(ch).startswith("C"))
    )
    return "".join(kept)[:MAX_INPUT_LENGTH]
