"""
Run deadline: bounds one whole sync or reconcile run.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from msk.core.exceptions import RunCancelled


class Deadline:
    """整次运行的时限，跨所有分页/项目/路由表共享"""

    def __init__(self, timeout_seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._timeout = timeout_seconds
        self._expires_at = None if timeout_seconds is None else clock() + timeout_seconds
        self._cancelled = False

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def cancel(self) -> None:
        self._cancelled = True

    def remaining(self) -> Optional[float]:
        """剩余秒数，无时限时返回 None"""
        if self._cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def bound(self, timeout: float) -> float:
        """单次请求的超时不超过剩余时间"""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def check(self, stage: str) -> None:
        if self._cancelled:
            raise RunCancelled(f"run cancelled before {stage}", stage=stage)
        if self.expired:
            raise RunCancelled(
                f"run exceeded its {self._timeout:g}s time limit before {stage}", stage=stage
            )
