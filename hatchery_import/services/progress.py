from __future__ import annotations

import queue
import sys
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress reporting: importer-owned event stream plus tqdm display (TTY only).

The importer publishes one ProgressEvent per processed row on its
ProgressStream. Consumers either subscribe a callback (called synchronously
on the importing thread) or iterate the stream from another thread.

Display:
- RowProgressBar: one tqdm bar per sheet, driven by stream events
- SheetProgressIndicator: one status line per sheet
Both are disabled when stdout is not a TTY to avoid ANSI spam in CI logs.
"""

__all__ = [
    "ProgressEvent",
    "ProgressStream",
    "RowProgressBar",
    "SheetProgressIndicator",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


@dataclass(frozen=True)
class ProgressEvent:
    sheet_name: str
    current: int  # rows processed so far (1-based, monotonic within a sheet)
    total: int


_CLOSED = object()


class ProgressStream:
    """Thread-safe publish / subscribe stream of ProgressEvent.

    ``iterate()`` hands events to a consumer in another thread; it ends when
    ``close()`` is called. Subscriber exceptions propagate to the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[ProgressEvent], None]] = []
        self._queues: list[queue.Queue[Any]] = []
        self._closed = False

    def subscribe(self, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            queues = list(self._queues)
        for q in queues:
            q.put(event)
        for callback in subscribers:
            callback(event)

    def iterate(self, timeout: float | None = None) -> Iterator[ProgressEvent]:
        """Iterator over events published after this call until the stream closes.

        The consumer is registered immediately, so events published before the
        first ``next()`` are not lost. Raises queue.Empty when ``timeout``
        elapses without an event.
        """
        q: queue.Queue[Any] = queue.Queue()
        with self._lock:
            if self._closed:
                return iter(())
            self._queues.append(q)
        return self._drain(q, timeout)

    def _drain(self, q: queue.Queue[Any], timeout: float | None) -> Iterator[ProgressEvent]:
        try:
            while True:
                item = q.get(timeout=timeout)
                if item is _CLOSED:
                    return
                yield item
        finally:
            with self._lock:
                if q in self._queues:
                    self._queues.remove(q)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            queues = list(self._queues)
        for q in queues:
            q.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed


class RowProgressBar:
    """tqdm bar for the rows of one sheet, fed by ProgressEvent."""

    def __init__(self, sheet_name: str, total_rows: int, *, enabled: bool | None = None) -> None:
        self.sheet_name = sheet_name
        self.total_rows = total_rows
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.current = 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=sheet_name,
                unit="row",
                leave=False,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, event: ProgressEvent) -> None:
        if event.sheet_name != self.sheet_name:
            return
        delta = event.current - self.current
        self.current = event.current
        if self.pbar is not None and delta > 0:
            self.pbar.update(delta)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgressBar:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class SheetProgressIndicator:
    """One status line per sheet of the workbook."""

    def __init__(self, file_name: str, total_sheets: int, *, enabled: bool | None = None) -> None:
        self.file_name = file_name
        self.total_sheets = total_sheets
        self.current_sheet = 0
        self.enabled = is_tty_enabled() if enabled is None else enabled

    def start_sheet(self, sheet_name: str) -> None:
        self.current_sheet += 1
        if self.enabled:
            print(f"  Sheet {self.current_sheet}/{self.total_sheets}: {sheet_name}", end="", flush=True)

    def finish_sheet(self, status: str, rows_imported: int = 0) -> None:
        if self.enabled:
            if rows_imported > 0:
                print(f" - {rows_imported} rows {status}")
            else:
                print(f" {status}")
