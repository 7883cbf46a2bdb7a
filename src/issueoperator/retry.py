"""Centralized requeue backoff helpers.

Issue clients never retry on their own; a failed reconciliation is handed
back to the work queue, which delays the next attempt for that key using the
exponential backoff (with jitter) computed here. Explicit server hints such
as ``Retry-After: 12`` or "wait 30 seconds" take precedence.

Environment overrides:
  ISSUEOPERATOR_RETRY_BASE (seconds base, default 0.5)
  ISSUEOPERATOR_RETRY_MAX_SLEEP (cap in seconds, default 300)
"""

from __future__ import annotations

import os
import random
import re
import threading
from dataclasses import dataclass, field

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class BackoffConfig:
    base_sleep: float = field(
        default_factory=lambda: _env_float("ISSUEOPERATOR_RETRY_BASE", 0.5)
    )
    max_sleep: float = field(
        default_factory=lambda: _env_float("ISSUEOPERATOR_RETRY_MAX_SLEEP", 300.0)
    )
    jitter: float = 0.25


def compute_backoff(failures: int, cfg: BackoffConfig | None = None, hint: str = "") -> float:
    """Delay before attempt number ``failures + 1``.

    ``failures`` counts consecutive failures (1 for the first retry).
    """
    cfg = cfg or BackoffConfig()
    attempt = max(1, failures)
    explicit = _extract_explicit_backoff(hint)
    if explicit is not None:
        sleep_for = explicit
    else:
        # Clamp the exponent so long failure streaks cannot overflow.
        sleep_for = cfg.base_sleep * (2 ** min(attempt - 1, 32))
        if cfg.jitter > 0:
            sleep_for += _JITTER.uniform(0, cfg.jitter)
    if cfg.max_sleep >= 0:
        sleep_for = min(sleep_for, cfg.max_sleep)
    return sleep_for


class RateLimiter:
    """Per-key exponential failure backoff."""

    def __init__(self, cfg: BackoffConfig | None = None) -> None:
        self.cfg = cfg or BackoffConfig()
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def when(self, key: str, hint: str = "") -> float:
        with self._lock:
            count = self._failures.get(key, 0) + 1
            self._failures[key] = count
        return compute_backoff(count, self.cfg, hint)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)


__all__ = ["BackoffConfig", "RateLimiter", "compute_backoff"]
