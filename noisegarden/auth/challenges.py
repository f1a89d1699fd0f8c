from __future__ import annotations

import threading
import time
from typing import Dict, Optional, Tuple

from ..config import settings


class ChallengeStore:
    """
    In-memory passkey challenges, keyed by (ceremony, username).

    A challenge is single-use: ``pop`` removes it. Entries older than the
    TTL are treated as missing. Lost on restart, like the rate limiter.
    """

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self._items: Dict[Tuple[str, str], Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def put(self, ceremony: str, username: str, challenge: bytes) -> None:
        now = time.monotonic()
        with self._lock:
            self._prune(now)
            self._items[(ceremony, username)] = (challenge, now + self.ttl_seconds)

    def pop(self, ceremony: str, username: str) -> Optional[bytes]:
        now = time.monotonic()
        with self._lock:
            entry = self._items.pop((ceremony, username), None)
        if entry is None or entry[1] < now:
            return None
        return entry[0]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _prune(self, now: float) -> None:
        for key in [k for k, (_, exp) in self._items.items() if exp < now]:
            del self._items[key]


challenge_store = ChallengeStore(settings.webauthn_challenge_ttl_seconds)
