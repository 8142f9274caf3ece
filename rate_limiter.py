# rate_limiter.py - in-process sliding-window admission control
"""
Per-key sliding window: each key keeps the timestamps admitted inside the
trailing window. A request is admitted while the count is below the limit.

The limiter is constructed once per application and handed to handlers via
app.state; it is a denial-of-abuse guard only, so losing its state on
restart is acceptable. Tracked keys are bounded and the least recently used
key is evicted first.
"""

import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from config.limits import RATE_LIMIT
from errors import RateLimited

logger = logging.getLogger(__name__)


class ACTION:
    """Action classes; each gets its own key space"""
    CREATE = "create"
    START = "start"
    COMPLETE = "complete"
    PROMPT_IMPROVE = "prompt-improve"


ACTION_LIMITS = {
    ACTION.CREATE: RATE_LIMIT.CREATE_PER_WINDOW,
    ACTION.START: RATE_LIMIT.START_PER_WINDOW,
    ACTION.COMPLETE: RATE_LIMIT.COMPLETE_PER_WINDOW,
    ACTION.PROMPT_IMPROVE: RATE_LIMIT.PROMPT_IMPROVE_PER_WINDOW,
}


@dataclass
class RateDecision:
    allowed: bool
    retry_after_ms: int
    remaining: int
    limit: int

    def headers(self) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, -(-self.retry_after_ms // 1000)))
        return headers


class SlidingWindowRateLimiter:
    def __init__(self, max_keys: int = RATE_LIMIT.MAX_TRACKED_KEYS,
                 clock: Optional[Callable[[], float]] = None):
        self.max_keys = max_keys
        self._clock = clock or time.monotonic
        self._hits: "OrderedDict[str, deque]" = OrderedDict()
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def admit(self, key: str, limit: int, window_ms: int = RATE_LIMIT.WINDOW_MS) -> RateDecision:
        now = self._now_ms()
        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = deque()
                self._hits[key] = hits
            self._hits.move_to_end(key)

            while hits and now - hits[0] >= window_ms:
                hits.popleft()

            if len(hits) >= limit:
                retry_after = max(0, window_ms - (now - hits[0]))
                return RateDecision(False, retry_after, 0, limit)

            hits.append(now)
            remaining = max(0, limit - len(hits))

            while len(self._hits) > self.max_keys:
                evicted, _ = self._hits.popitem(last=False)
                logger.debug(f"Rate limiter evicted key {evicted}")

            return RateDecision(True, 0, remaining, limit)

    def check(self, action: str, subject: str, limit: Optional[int] = None,
              window_ms: int = RATE_LIMIT.WINDOW_MS) -> RateDecision:
        """Admit or raise RateLimited for one action class and subject (user id or IP)"""
        limit = limit if limit is not None else ACTION_LIMITS[action]
        decision = self.admit(f"{action}:{subject}", limit, window_ms)
        if not decision.allowed:
            logger.info(f"Rate limited {action} for {subject}, retry in {decision.retry_after_ms}ms")
            raise RateLimited(retry_after_ms=decision.retry_after_ms, limit=limit)
        return decision

    def reset(self):
        with self._lock:
            self._hits.clear()

    def __len__(self):
        return len(self._hits)


def client_ip(request: Request) -> str:
    """First x-forwarded-for hop, then x-real-ip, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


__all__ = [
    'ACTION',
    'ACTION_LIMITS',
    'RateDecision',
    'SlidingWindowRateLimiter',
    'client_ip',
]
