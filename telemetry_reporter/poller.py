"""Periodic emitter of interpreter and process statistics."""
from typing import Dict, Optional
import gc
import logging
import os
import sys
import threading

from telemetry_reporter.events import EventBus, default_bus

logger = logging.getLogger(__name__)


def memory_measurements() -> Dict[str, int]:
    measurements = {"allocated_blocks": sys.getallocatedblocks()}

    try:
        import resource
    except ImportError:
        # Not available on Windows
        return measurements

    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    if sys.platform != "darwin":
        max_rss *= 1024
    measurements["max_rss"] = max_rss
    return measurements


def gc_measurements() -> Dict[str, int]:
    gen0, gen1, gen2 = gc.get_count()
    return {"gen0": gen0, "gen1": gen1, "gen2": gen2}


def cpu_measurements() -> Dict[str, float]:
    times = os.times()
    return {"user_time": times.user, "system_time": times.system}


class ProcessPoller:
    """Emits process.* events on a bus every ``interval_s`` seconds."""

    def __init__(self, interval_s: float = 10.0, bus: Optional[EventBus] = None):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.interval_s = interval_s
        self.bus = bus if bus is not None else default_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self):
        """Emit one round of measurements."""
        self.bus.execute("process.memory", memory_measurements())
        self.bus.execute("process.gc", gc_measurements())
        self.bus.execute("process.threads", {"count": threading.active_count()})
        self.bus.execute("process.cpu", cpu_measurements())

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception as e:
                logger.error(f"Error polling process stats: {e}", exc_info=True)
            self._stop_event.wait(self.interval_s)

    def start(self):
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="process-poller", daemon=True)
        self._thread.start()
        logger.info(f"Process poller started (every {self.interval_s}s)")

    def stop(self):
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=self.interval_s + 1)
        self._thread = None
        logger.info("Process poller stopped")
