"""
BLE transport for the Aranet4
GATT identifiers and the characteristic access layer used by the device code
"""

import asyncio
import concurrent.futures
import logging
from abc import ABC, abstractmethod
from threading import Thread
from typing import Callable, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from errors import TransportError

logger = logging.getLogger(__name__)

# Aranet4 service
DEVICE_SERVICE_UUID =               "f0cd1400-95da-4f4b-9ac8-aa55d312af0c"
WRITE_CMD_UUID =                    "f0cd1402-95da-4f4b-9ac8-aa55d312af0c"  # Pi writes commands
READ_SAMPLE_UUID =                  "f0cd1503-95da-4f4b-9ac8-aa55d312af0c"
READ_ALL_UUID =                     "f0cd3001-95da-4f4b-9ac8-aa55d312af0c"  # current reading, all fields
READ_INTERVAL_UUID =                "f0cd2002-95da-4f4b-9ac8-aa55d312af0c"
READ_TIME_SERIES_UUID =             "f0cd2003-95da-4f4b-9ac8-aa55d312af0c"  # history pages (notify)
READ_SECONDS_SINCE_UPDATE_UUID =    "f0cd2004-95da-4f4b-9ac8-aa55d312af0c"
READ_TOTAL_READINGS_UUID =          "f0cd2001-95da-4f4b-9ac8-aa55d312af0c"

# Generic access service
GENERIC_SERVICE_UUID =              "00001800-0000-1000-8000-00805f9b34fb"
DEVICE_NAME_UUID =                  "00002a00-0000-1000-8000-00805f9b34fb"

# Device information service
COMMON_SERVICE_UUID =               "0000180a-0000-1000-8000-00805f9b34fb"
MANUFACTURER_NAME_UUID =            "00002a29-0000-1000-8000-00805f9b34fb"
MODEL_NUMBER_UUID =                 "00002a24-0000-1000-8000-00805f9b34fb"
SERIAL_NUMBER_UUID =                "00002a25-0000-1000-8000-00805f9b34fb"
HW_REVISION_UUID =                  "00002a27-0000-1000-8000-00805f9b34fb"
SW_REVISION_UUID =                  "00002a28-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID =                "00002a19-0000-1000-8000-00805f9b34fb"


NotifyCallback = Callable[[bytes], None]


class Transport(ABC):
    """
    Characteristic access needed by the device layer.

    Notification callbacks may be invoked on a thread owned by the transport,
    never on the caller's thread.
    """

    @abstractmethod
    def read_characteristic(self, service: str, characteristic: str) -> bytes:
        ...

    @abstractmethod
    def write_characteristic(self, service: str, characteristic: str, data: bytes) -> None:
        ...

    @abstractmethod
    def subscribe(self, service: str, characteristic: str, on_value: NotifyCallback):
        """Start notifications and return a handle for unsubscribe()"""

    @abstractmethod
    def unsubscribe(self, handle) -> None:
        ...

    def advertised_name(self) -> Optional[str]:
        """Name the peripheral advertised, if the transport saw one"""
        return None

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class BleakTransport(Transport):
    """
    Transport over a bleak GATT client.

    The client lives on a private asyncio event loop running in a daemon
    thread; the blocking methods below hand coroutines to that loop and wait
    for their result.
    """

    def __init__(self, address: str, timeout: float = 30.0):
        self.address = address
        self.timeout = timeout
        self.client: Optional[BleakClient] = None
        self._advertised_name: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[Thread] = None

    def _start_event_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _run(self, coro, what: str):
        """Run a coroutine on the transport loop from sync context"""
        if self._loop is None:
            coro.close()
            raise TransportError(f"could not {what}: transport is not connected")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TransportError(f"could not {what}: timed out after {self.timeout}s") from exc
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportError(f"could not {what}: {exc}") from exc

    def connect(self) -> "BleakTransport":
        if self.client and self.client.is_connected:
            return self

        if self._thread is None:
            self._loop = asyncio.new_event_loop()
            self._thread = Thread(target=self._start_event_loop, name=f"ble-{self.address}", daemon=True)
            self._thread.start()

        device = self._run(
            BleakScanner.find_device_by_address(self.address, timeout=self.timeout),
            f"find {self.address!r}",
        )
        if device is None:
            raise TransportError(f"could not find {self.address!r}")
        self._advertised_name = device.name

        self.client = BleakClient(device, timeout=self.timeout)
        self._run(self.client.connect(), f"connect to {self.address!r}")
        logger.info("connected", extra={"device": self.address})
        return self

    def close(self) -> None:
        """Safely disconnect and stop the transport loop"""
        try:
            if self.client and self.client.is_connected:
                self._run(self.client.disconnect(), "disconnect")
                logger.info("disconnected", extra={"device": self.address})
        finally:
            self.client = None
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._thread.join(timeout=self.timeout)
                self._loop.close()
                self._loop = None
                self._thread = None

    def __enter__(self):
        return self.connect()

    def advertised_name(self) -> Optional[str]:
        return self._advertised_name

    def _characteristic(self, service: str, characteristic: str):
        if self.client is None:
            raise TransportError("transport is not connected")
        svc = self.client.services.get_service(service)
        if svc is None:
            raise TransportError(f"could not find service {service!r}")
        char = svc.get_characteristic(characteristic)
        if char is None:
            raise TransportError(f"could not get characteristic {characteristic!r}")
        return char

    def read_characteristic(self, service: str, characteristic: str) -> bytes:
        char = self._characteristic(service, characteristic)
        raw = self._run(self.client.read_gatt_char(char), f"read {characteristic!r}")
        return bytes(raw)

    def write_characteristic(self, service: str, characteristic: str, data: bytes) -> None:
        char = self._characteristic(service, characteristic)
        self._run(self.client.write_gatt_char(char, data, response=True), f"write {characteristic!r}")

    def subscribe(self, service: str, characteristic: str, on_value: NotifyCallback):
        char = self._characteristic(service, characteristic)

        def notify_handler(sender, data: bytearray):
            on_value(bytes(data))

        self._run(self.client.start_notify(char, notify_handler), f"start notify on {characteristic!r}")
        return char

    def unsubscribe(self, handle) -> None:
        if self.client is None or not self.client.is_connected:
            return
        self._run(self.client.stop_notify(handle), "stop notify")
