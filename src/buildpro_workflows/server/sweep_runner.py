"""Background polling runner for the deadline sweep."""

from __future__ import annotations

import logging
import threading

from buildpro_workflows.engine.workflow.deadlines import DeadlineSweep

logger = logging.getLogger(__name__)


class SweepRunner:
    """Runs :meth:`DeadlineSweep.run` on a daemon thread every ``interval_seconds``."""

    def __init__(self, sweep: DeadlineSweep, *, interval_seconds: float) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="deadline-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("Deadline sweep runner started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._sweep.run()
            except Exception:
                # Keep the loop alive; the next tick retries.
                logger.exception("Deadline sweep failed")
            self._stop.wait(self._interval)
