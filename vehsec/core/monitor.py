"""Periodic PID polling with listener dispatch."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from vehsec.core.model import Reading

LOGGER = logging.getLogger(__name__)

DataCallback = Callable[[Reading], None]
ErrorCallback = Callable[[str, Exception], None]


class PidMonitor:
    """Polls registered PIDs on a background thread until stopped.

    Each tick reads the registered PIDs one after another through ``reader``
    and hands every reading to the PID's callback. Once ``stop()`` returns no
    callback fires for the PIDs it removed.
    """

    def __init__(
        self,
        reader: Callable[[str], Reading],
        interval_s: float = 0.1,
        *,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._reader = reader
        self.interval_s = interval_s
        self._on_error = on_error
        self._pids: list[str] = []
        self._callbacks: dict[str, DataCallback] = {}
        self._state_lock = threading.Lock()
        self._dispatch_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    @property
    def pids(self) -> tuple[str, ...]:
        with self._state_lock:
            return tuple(self._pids)

    def on_data(self, pid: str, callback: DataCallback) -> None:
        with self._state_lock:
            self._callbacks[pid] = callback

    def start(self, pids: Iterable[str], interval_s: float | None = None) -> None:
        if interval_s is not None:
            self.interval_s = interval_s
        with self._state_lock:
            for pid in pids:
                if pid not in self._pids:
                    self._pids.append(pid)
            if not self._pids or self.running:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="vehsec-monitor",
                daemon=True,
            )
            self._thread.start()

    def stop(self, pid: str | None = None) -> None:
        with self._dispatch_lock:
            with self._state_lock:
                if pid is None:
                    self._pids.clear()
                    self._callbacks.clear()
                else:
                    if pid in self._pids:
                        self._pids.remove(pid)
                    self._callbacks.pop(pid, None)
                if self._pids:
                    return
                stop_event, thread = self._stop_event, self._thread
                stop_event.set()

        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            for pid in self.pids:
                if stop_event.is_set():
                    return
                try:
                    reading = self._reader(pid)
                except Exception as exc:
                    LOGGER.warning("Polling %s failed: %s", pid, exc)
                    if self._on_error is not None:
                        self._on_error(pid, exc)
                    continue
                self._dispatch(pid, reading, stop_event)
            if stop_event.wait(self.interval_s):
                return

    def _dispatch(self, pid: str, reading: Reading, stop_event: threading.Event) -> None:
        with self._dispatch_lock:
            if stop_event.is_set():
                return
            with self._state_lock:
                callback = self._callbacks.get(pid) if pid in self._pids else None
            if callback is None:
                return
            try:
                callback(reading)
            except Exception:
                LOGGER.exception("Listener for %s raised", pid)
