from __future__ import annotations

import math
import time
from collections import OrderedDict, deque
from threading import Lock
from typing import Deque, Iterable, Tuple

from fastapi import Depends, HTTPException, Request, status

from croissant_tour.core.config import settings
from croissant_tour.core.deps import get_current_user_id
from croissant_tour.core.identity import client_host

WINDOW_SECONDS = 60


class WriteLimiter:
    """Sliding-window counters for write requests, shared by all routers.

    A request is charged to several keys at once (the anonymous user and the
    client IP) and is only recorded if every key still has room. Keys are kept
    in least-recently-used order and the oldest are dropped past `max_keys`.
    Counters live in the process, so each worker enforces its own limits.
    """

    def __init__(self, *, max_keys: int = 20_000) -> None:
        self._max_keys = max_keys
        self._lock = Lock()
        self._hits: OrderedDict[str, Deque[float]] = OrderedDict()

    def hit(self, charges: Iterable[Tuple[str, int]], *, window_seconds: int = WINDOW_SECONDS) -> int:
        """Record one hit on each `(key, limit)` pair.

        Returns 0 when allowed, otherwise the seconds until the fullest key frees up.
        """
        now = time.monotonic()
        charges = list(charges)

        with self._lock:
            windows = [(self._window(key, now, window_seconds), limit) for key, limit in charges]

            retry_after = 0
            for hits, limit in windows:
                if len(hits) >= limit:
                    wait = math.ceil(window_seconds - (now - hits[0])) if hits else window_seconds
                    retry_after = max(retry_after, wait, 1)
            if retry_after:
                return retry_after

            for hits, _ in windows:
                hits.append(now)
            while len(self._hits) > self._max_keys:
                self._hits.popitem(last=False)
            return 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def _window(self, key: str, now: float, window_seconds: int) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            hits = self._hits[key] = deque()
        else:
            self._hits.move_to_end(key)
        while hits and now - hits[0] >= window_seconds:
            hits.popleft()
        return hits


limiter = WriteLimiter()


def enforce_write_limit(request: Request, user_id: str = Depends(get_current_user_id)) -> None:
    # The IP ceiling bounds clients that drop their cookie to get a fresh user each time
    charges = [
        (f"user:{user_id}", settings.write_rate_limit),
        (f"ip:{client_host(request)}", settings.write_rate_limit_per_ip),
    ]
    retry_after = limiter.hit(charges)
    if retry_after:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )


write_limit = Depends(enforce_write_limit)
