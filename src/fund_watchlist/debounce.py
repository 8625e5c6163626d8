from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

from .logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class SearchDebouncer(Generic[T]):
    """Runs `search` only for the last keyword submitted within `delay` seconds.

    A search that already started when a newer keyword arrives still runs,
    but its result is dropped instead of being passed to `on_result`.
    """

    def __init__(
        self,
        search: Callable[[str], T],
        on_result: Callable[[str, T], None],
        on_clear: Callable[[], None] | None = None,
        delay: float = 0.3,
    ) -> None:
        self._search = search
        self._on_result = on_result
        self._on_clear = on_clear
        self._delay = delay
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0

    def submit(self, keyword: str) -> None:
        keyword = keyword.strip()
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if keyword:
                self._timer = threading.Timer(self._delay, self._run, args=(keyword, generation))
                self._timer.daemon = True
                self._timer.start()

        if not keyword and self._on_clear is not None:
            self._on_clear()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def join(self, timeout: float | None = None) -> None:
        """Wait for the pending search, if any, to run."""
        with self._lock:
            timer = self._timer
        if timer is not None:
            timer.join(timeout)

    def _run(self, keyword: str, generation: int) -> None:
        try:
            result = self._search(keyword)
        except Exception:
            log.exception("search_failed", keyword=keyword)
            return
        with self._lock:
            if generation != self._generation:
                log.debug("search_result_discarded", keyword=keyword)
                return
            self._timer = None
        self._on_result(keyword, result)
