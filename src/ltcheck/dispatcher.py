from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Optional

from tqdm import tqdm

from .errors import CancellationError, TransportError
from .models import CheckResponse, Fragment

_logger = logging.getLogger(__name__)

SEQUENTIAL = "sequential"
PARALLEL = "parallel"
CONCURRENCY_MODES = (SEQUENTIAL, PARALLEL)

_POLL_INTERVAL_S = 0.05

CheckFragment = Callable[[str, Any], CheckResponse]
ProgressCallback = Callable[[dict[str, Any]], None]


def normalize_mode(value: Any) -> str:
    raw = str(value or PARALLEL).strip().lower().replace("_", "-")
    if raw in {"bounded-parallel", "concurrent"}:
        raw = PARALLEL
    if raw not in CONCURRENCY_MODES:
        raise ValueError(f"Invalid concurrency mode: {value!r}. Allowed: {', '.join(CONCURRENCY_MODES)}")
    return raw


def _as_transport_error(exc: BaseException, fragment_index: int) -> TransportError:
    if isinstance(exc, TransportError):
        exc.fragment_index = fragment_index
        return exc
    err = TransportError(f"Fragment {fragment_index}: check failed: {exc}", fragment_index=fragment_index)
    err.__cause__ = exc
    return err


class Dispatcher:
    """Send one request per fragment and return the raw results in fragment order."""

    def __init__(
        self,
        check_fragment: CheckFragment,
        *,
        options: Any = None,
        concurrency: str = PARALLEL,
        max_workers: int = 4,
        timeout_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
        show_progress: bool = False,
    ):
        self.check_fragment = check_fragment
        self.options = options
        self.mode = normalize_mode(concurrency)
        self.max_workers = 1 if self.mode == SEQUENTIAL else max(1, int(max_workers))
        self.timeout_s = timeout_s if timeout_s and timeout_s > 0 else None
        self.cancel_event = cancel_event
        self.progress_callback = progress_callback
        self.show_progress = show_progress

    def _emit(self, event: str, **fields: Any) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback({"event": event, "mode": self.mode, **fields})
        except Exception:
            _logger.debug("Failed to emit dispatch progress event", exc_info=True)

    def _remaining(self, deadline: Optional[float]) -> float:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CancellationError("Check cancelled before all fragments completed")
        if deadline is None:
            return _POLL_INTERVAL_S
        left = deadline - time.monotonic()
        if left <= 0:
            raise CancellationError(f"Check timed out after {self.timeout_s:.1f}s")
        return min(_POLL_INTERVAL_S, left)

    def _wait_one(self, fut: Future, deadline: Optional[float]) -> None:
        while not fut.done():
            wait([fut], timeout=self._remaining(deadline))

    def dispatch(self, fragments: Sequence[Fragment]) -> list[CheckResponse]:
        total = len(fragments)
        if total == 0:
            return []
        deadline = time.monotonic() + self.timeout_s if self.timeout_s else None
        results: list[Optional[CheckResponse]] = [None] * total
        errors: dict[int, TransportError] = {}
        _logger.info("Dispatching %d fragment(s): mode=%s workers=%d", total, self.mode, self.max_workers)
        self._emit("start", total=total, workers=self.max_workers)

        def _collect(fut: Future, index: int) -> None:
            exc = fut.exception()
            if exc is not None:
                errors[index] = _as_transport_error(exc, index)
                _logger.warning("Fragment %d failed: %s", index, exc)
                self._emit("error", fragment_index=index, error=str(exc))
            else:
                results[index] = fut.result()
                self._emit("response", fragment_index=index, completed=total - results.count(None), total=total)
            progress.update(1)

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, total), thread_name_prefix="ltcheck")
        finished = False
        progress = tqdm(total=total, desc="Check", unit="frag", disable=not self.show_progress)
        try:
            if self.mode == SEQUENTIAL:
                for frag in fragments:
                    self._emit("request", fragment_index=frag.index, chars=len(frag))
                    fut = executor.submit(self.check_fragment, frag.text, self.options)
                    self._wait_one(fut, deadline)
                    _collect(fut, frag.index)
                    if errors:
                        break
            else:
                futures: dict[Future, int] = {}
                for frag in fragments:
                    self._emit("request", fragment_index=frag.index, chars=len(frag))
                    futures[executor.submit(self.check_fragment, frag.text, self.options)] = frag.index
                pending = set(futures)
                while pending:
                    done, pending = wait(pending, timeout=self._remaining(deadline), return_when=FIRST_COMPLETED)
                    for fut in done:
                        _collect(fut, futures[fut])
            finished = True
        finally:
            progress.close()
            # Abandon queued and in-flight calls on cancellation; their results are never read.
            executor.shutdown(wait=finished, cancel_futures=not finished)

        if errors:
            raise errors[min(errors)]
        self._emit("done", total=total)
        return [r for r in results if r is not None]


def dispatch(
    fragments: Sequence[Fragment],
    check_fragment: CheckFragment,
    *,
    options: Any = None,
    concurrency: str = PARALLEL,
    max_workers: int = 4,
    timeout_s: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[ProgressCallback] = None,
    show_progress: bool = False,
) -> list[CheckResponse]:
    return Dispatcher(
        check_fragment,
        options=options,
        concurrency=concurrency,
        max_workers=max_workers,
        timeout_s=timeout_s,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
        show_progress=show_progress,
    ).dispatch(fragments)
