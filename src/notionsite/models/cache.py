from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class TimedCacheEntry(Generic[V]):
    """A cached value with its expiry on the cache clock.

    An entry past ``expires_at`` is still returned by stale reads.
    """

    value: V
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at
