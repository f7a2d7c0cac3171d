"""
Polling service
Periodically pulls the history from the Aranet4 and stores the new samples
"""

import logging
from datetime import timedelta
from threading import Event, Lock, Thread
from typing import Callable, Optional

from aranet_device import AranetDevice, open_device
from errors import AranetError
from sample_store import SampleStore
from settings import get_settings

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[], AranetDevice]

# Used when the device cannot tell its sampling interval
DEFAULT_TICK = timedelta(minutes=1)


class RefreshService:
    """Coordinates device reads and store merges; one refresh at a time."""

    def __init__(
        self,
        store: SampleStore,
        device_factory: DeviceFactory,
        retries: int = 3,
    ) -> None:
        self.store = store
        self.device_factory = device_factory
        self.retries = max(retries, 1)
        self.interval: Optional[timedelta] = None
        self._refresh_lock = Lock()
        self._thread: Optional[Thread] = None
        self._stop = Event()

    def _refresh_once(self) -> int:
        with self.device_factory() as device:
            samples = device.read_all()
        return self.store.merge(samples)

    def refresh(self) -> int:
        """
        Fetch the device history and merge it into the store.

        Each failed attempt is logged and retried immediately, up to
        ``retries`` attempts; the last error is raised. Returns the number of
        new samples written.
        """
        with self._refresh_lock:
            for attempt in range(1, self.retries + 1):
                try:
                    return self._refresh_once()
                except AranetError as exc:
                    logger.warning(
                        "refresh failed: %s", exc,
                        extra={"attempt": attempt, "retries": self.retries},
                    )
                    if attempt == self.retries:
                        raise
        return 0

    def read_interval(self) -> timedelta:
        with self.device_factory() as device:
            return device.interval()

    def run(self, stop: Optional[Event] = None) -> None:
        """Refresh now, then on every device sampling interval until stop is set"""
        stop = stop or self._stop
        try:
            self.interval = self.read_interval()
        except AranetError as exc:
            logger.error("could not fetch refresh frequency: %s", exc)
        tick = self.interval if self.interval else DEFAULT_TICK
        logger.info("refresh frequency: %s", tick)

        while not stop.is_set():
            try:
                self.refresh()
            except AranetError as exc:
                logger.error("could not update db: %s", exc)
            if stop.wait(tick.total_seconds()):
                break

    def start(self) -> Thread:
        if self._thread is None:
            self._stop.clear()
            self._thread = Thread(target=self.run, args=(self._stop,), name="aranet4-refresh", daemon=True)
            self._thread.start()
        return self._thread

    def shutdown(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def build_default_service(store: SampleStore) -> RefreshService:
    settings = get_settings()

    def factory() -> AranetDevice:
        return open_device(
            settings.device_address,
            timeout=settings.connect_timeout,
            fetch_timeout=settings.fetch_timeout,
        )

    return RefreshService(store, factory, retries=settings.refresh_retries)
