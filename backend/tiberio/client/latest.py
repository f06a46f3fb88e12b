import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Hashable, Optional

from tiberio.utils.logging import get_logger

log = get_logger("tiberio.client.latest")


class LatestRequests:
    """
    Last-request-wins dispatcher. Each submit for a key supersedes the
    previous one: the older future is cancelled if it has not started, and
    its result is ignored if it has.
    """

    def __init__(self, executor: Optional[Executor] = None):
        self.executor = executor or ThreadPoolExecutor(max_workers=4)
        self._lock = threading.Lock()
        self._generation: Dict[Hashable, int] = {}
        self._futures: Dict[Hashable, Future] = {}

    def submit(
        self,
        key: Hashable,
        fn: Callable[[], Any],
        on_result: Callable[[Any], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> Future:
        with self._lock:
            gen = self._generation.get(key, 0) + 1
            self._generation[key] = gen
            prev = self._futures.pop(key, None)
            if prev is not None and prev.cancel():
                log.debug("cancelled superseded request %r", key)
            future = self.executor.submit(fn)
            self._futures[key] = future

        future.add_done_callback(lambda f: self._deliver(key, gen, f, on_result, on_error))
        return future

    def _deliver(self, key, gen, future: Future, on_result, on_error) -> None:
        if future.cancelled():
            return
        with self._lock:
            if self._generation.get(key) != gen:
                log.debug("ignoring stale result for %r", key)
                return
            if self._futures.get(key) is future:
                del self._futures[key]

        exc = future.exception()
        if exc is not None:
            if on_error is not None:
                on_error(exc)
            else:
                log.warning("request %r failed: %s", key, exc)
            return
        on_result(future.result())

    def cancel(self, key: Hashable) -> None:
        with self._lock:
            self._generation[key] = self._generation.get(key, 0) + 1
            future = self._futures.pop(key, None)
        if future is not None:
            future.cancel()

    def shutdown(self) -> None:
        with self._lock:
            keys = list(self._futures)
        for key in keys:
            self.cancel(key)
        self.executor.shutdown(wait=False)
