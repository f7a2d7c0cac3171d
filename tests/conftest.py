from __future__ import annotations

import struct
import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from ble_transport import (
    DEVICE_SERVICE_UUID,
    READ_INTERVAL_UUID,
    READ_SECONDS_SINCE_UPDATE_UUID,
    READ_TOTAL_READINGS_UUID,
    WRITE_CMD_UUID,
    Transport,
)
from errors import TransportError
from sensor_models import Param


def encode_values(param: int, raws: List[int]) -> bytes:
    fmt = "<B" if param == Param.HUMIDITY else "<H"
    return b"".join(struct.pack(fmt, raw) for raw in raws)


def make_page(param: int, start: int, raws: List[int], count: Optional[int] = None) -> bytes:
    """Build one time-series notification: param, start (1-based), count, values"""
    count = len(raws) if count is None else count
    return struct.pack("<BHB", param, start, count) + encode_values(param, raws)


def end_page(param: int) -> bytes:
    return make_page(param, 0, [], count=0)


class FakeTransport(Transport):
    """
    In-memory Aranet4. Subscribing to the time-series characteristic replays
    the pages registered for the last requested parameter from a separate
    thread, like a BLE stack would.
    """

    def __init__(self) -> None:
        self.values: Dict[Tuple[str, str], bytes] = {}
        self.pages: Dict[int, List[bytes]] = {}
        self.writes: List[Tuple[str, str, bytes]] = []
        self.subscribed: List[object] = []
        self.unsubscribed: List[object] = []
        self.fail_reads: set = set()
        self.closed = False
        self.peripheral_name: Optional[str] = None
        self._requested: Optional[int] = None
        self._threads: Dict[int, threading.Thread] = {}

    def read_characteristic(self, service: str, characteristic: str) -> bytes:
        if characteristic in self.fail_reads:
            raise TransportError(f"could not read {characteristic!r}")
        try:
            return self.values[(service, characteristic)]
        except KeyError:
            raise TransportError(f"could not get characteristic {characteristic!r}") from None

    def write_characteristic(self, service: str, characteristic: str, data: bytes) -> None:
        self.writes.append((service, characteristic, bytes(data)))
        if characteristic == WRITE_CMD_UUID:
            self._requested = data[1]

    def subscribe(self, service: str, characteristic: str, on_value: Callable[[bytes], None]):
        handle = object()
        pages = list(self.pages.get(self._requested, []))

        def deliver() -> None:
            for page in pages:
                on_value(page)

        thread = threading.Thread(target=deliver, daemon=True)
        self._threads[id(handle)] = thread
        self.subscribed.append(handle)
        thread.start()
        return handle

    def unsubscribe(self, handle) -> None:
        thread = self._threads.pop(id(handle), None)
        if thread is not None:
            thread.join(timeout=5)
        self.unsubscribed.append(handle)

    def advertised_name(self) -> Optional[str]:
        return self.peripheral_name

    def close(self) -> None:
        self.closed = True

    def set_u16(self, characteristic: str, value: int) -> None:
        self.values[(DEVICE_SERVICE_UUID, characteristic)] = struct.pack("<H", value)

    def set_history(self, ago: int, interval: int, series: Dict[int, List[int]]) -> None:
        """Register a history; series maps parameter id to raw values"""
        n = max((len(v) for v in series.values()), default=0)
        self.set_u16(READ_SECONDS_SINCE_UPDATE_UUID, ago)
        self.set_u16(READ_INTERVAL_UUID, interval)
        self.set_u16(READ_TOTAL_READINGS_UUID, n)
        for param, raws in series.items():
            self.pages[param] = [make_page(param, 1, raws), end_page(param)]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
