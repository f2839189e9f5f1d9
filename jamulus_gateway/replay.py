"""In-memory replay protection for single-use tokens.

Maps token id (jti) -> exp (unix seconds). An entry is live while exp > now;
expired entries count as unused even before they are purged. Purging happens
opportunistically from verification traffic, at most once per sweep interval,
so the cache never needs a background thread.

Size is bounded by (token rate x max token lifetime) because the authenticator
rejects tokens whose exp is too far in the future.

The cache is process-local and not persisted. A restart forgets every entry.

Env:
- REPLAY_SWEEP_INTERVAL_SECONDS (default: 60)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .errors import ConfigError

logger = logging.getLogger("jamulus_gateway.replay")


@dataclass(frozen=True)
class ReplayCacheConfig:
    sweep_interval_seconds: int = 60

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReplayCacheConfig":
        env = os.environ if environ is None else environ
        raw = (env.get("REPLAY_SWEEP_INTERVAL_SECONDS") or "").strip() or str(cls.sweep_interval_seconds)
        try:
            interval = int(raw)
        except ValueError as e:
            raise ConfigError(f"REPLAY_SWEEP_INTERVAL_SECONDS must be an integer, got {raw!r}") from e
        # Clamp to sensible bounds
        interval = max(1, min(interval, 3600))
        return cls(sweep_interval_seconds=interval)


class ReplayCache:
    def __init__(self, config: Optional[ReplayCacheConfig] = None):
        self.config = config or ReplayCacheConfig()
        self._lock = threading.Lock()
        # jti -> exp
        self._entries: Dict[str, float] = {}
        self._last_sweep: float = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def has(self, jti: str, now: float) -> bool:
        """True if jti was consumed and its validity window is still open."""
        with self._lock:
            exp = self._entries.get(jti)
            return exp is not None and exp > now

    def remember(self, jti: str, exp: float) -> None:
        with self._lock:
            self._entries[jti] = exp

    def check_and_remember(self, jti: str, exp: float, now: float) -> bool:
        """Atomically record jti unless a live entry exists.

        Returns True if the jti was fresh (and is now recorded), False if it is
        a replay. Two concurrent callers with the same jti never both get True.
        """
        with self._lock:
            seen = self._entries.get(jti)
            if seen is not None and seen > now:
                return False
            self._entries[jti] = exp
            return True

    def sweep(self, now: float) -> int:
        """Drop every entry with exp <= now. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(now)

    def maybe_sweep(self, now: float) -> int:
        """Sweep if at least one interval has passed since the last sweep."""
        with self._lock:
            if now - self._last_sweep < self.config.sweep_interval_seconds:
                return 0
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, exp in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        self._last_sweep = now
        if expired:
            logger.debug("Replay cache sweep removed %d expired entries (%d remain)", len(expired), len(self._entries))
        return len(expired)
