"""
core/challenges.py — Enrollment Challenge Store
=================================================
Pending WebAuthn registration challenges, keyed by the base64url user handle.
Challenges are single-use and expire after ENROLLMENT_CHALLENGE_TTL_SECONDS.
At most MAX_PENDING_ENROLLMENTS may be outstanding at once.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from config import settings
from core.errors import EnrollmentCapacityExceeded

logger = logging.getLogger("bharatid.challenges")


class ChallengeStore:
    """In-memory challenge store. Pending challenges are lost on restart."""

    def __init__(self, max_pending: Optional[int] = None):
        self._items: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()
        self._max_pending = max_pending

    @property
    def max_pending(self) -> int:
        return self._max_pending if self._max_pending is not None else settings.MAX_PENDING_ENROLLMENTS

    def put(self, user_handle: str, challenge: bytes, ttl_seconds: Optional[float] = None):
        """
        Store a challenge. Expired entries are purged when the store is full;
        if it is still full, raise EnrollmentCapacityExceeded.
        """
        ttl = settings.ENROLLMENT_CHALLENGE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        now = time.monotonic()
        with self._lock:
            if user_handle not in self._items and len(self._items) >= self.max_pending:
                self._purge(now)
                if len(self._items) >= self.max_pending:
                    logger.warning(f"Enrollment rejected: {len(self._items)} challenges pending")
                    raise EnrollmentCapacityExceeded("Too many enrollments in progress. Please retry shortly.")
            self._items[user_handle] = (challenge, now + ttl)

    def pop(self, user_handle: str) -> Optional[bytes]:
        """Take the challenge for ``user_handle``; None if missing or expired."""
        with self._lock:
            item = self._items.pop(user_handle, None)
        if item is None:
            return None
        challenge, expires_at = item
        if time.monotonic() >= expires_at:
            logger.info("Enrollment challenge expired before use.")
            return None
        return challenge

    def cleanup_expired(self) -> int:
        with self._lock:
            return self._purge(time.monotonic())

    def _purge(self, now: float) -> int:
        # caller holds the lock
        expired = [k for k, (_, exp) in self._items.items() if exp <= now]
        for key in expired:
            del self._items[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


challenge_store = ChallengeStore()
