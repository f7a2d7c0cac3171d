"""
Aranet4 device
Current reading, device metadata and the full sample history
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ble_transport import (
    BleakTransport,
    COMMON_SERVICE_UUID,
    DEVICE_NAME_UUID,
    DEVICE_SERVICE_UUID,
    GENERIC_SERVICE_UUID,
    READ_ALL_UUID,
    READ_INTERVAL_UUID,
    READ_SECONDS_SINCE_UPDATE_UUID,
    READ_TOTAL_READINGS_UUID,
    SW_REVISION_UUID,
    Transport,
)
from errors import AranetError, TransportError
from field_decoder import FieldDecoder
from notification_handler import fetch_time_series
from sensor_models import TIME_SERIES_PARAMS, Sample, SampleSlot

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class AranetDevice:
    """Represents a connected Aranet4 and the operations it supports."""

    def __init__(self, transport: Transport, address: str = "", fetch_timeout: float = 30.0):
        self.transport = transport              # Characteristic access
        self.address = address                  # BLE address, for logs only
        self.fetch_timeout = fetch_timeout      # Bound on one time-series fetch

    def close(self):
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def name(self) -> str:
        """GAP device name, or the advertised name where the stack hides the GAP service (BlueZ)"""
        try:
            raw = self.transport.read_characteristic(GENERIC_SERVICE_UUID, DEVICE_NAME_UUID)
        except TransportError as exc:
            advertised = self.transport.advertised_name()
            if advertised is None:
                raise
            logger.debug("using advertised name: %s", exc, extra={"device": self.address})
            return advertised
        return raw.decode('utf-8', errors='replace').rstrip('\x00')

    def version(self) -> str:
        raw = self.transport.read_characteristic(COMMON_SERVICE_UUID, SW_REVISION_UUID)
        return raw.decode('utf-8', errors='replace').rstrip('\x00')

    def read(self, now: Optional[datetime] = None) -> Sample:
        """Read the current sample from the all-fields characteristic"""
        raw = self.transport.read_characteristic(DEVICE_SERVICE_UUID, READ_ALL_UUID)

        dec = FieldDecoder(raw)
        co2 = dec.read_co2()
        temperature = dec.read_temperature()
        pressure = dec.read_pressure()
        humidity = dec.read_humidity()
        battery = dec.read_battery()
        dec.read_quality()
        interval = dec.read_interval()
        time = dec.read_time(now)
        dec.check()

        return Sample(
            time=time,
            temperature=temperature,
            humidity=humidity,
            pressure=pressure,
            co2=co2,
            battery=battery,
            interval=interval,
        )

    def _read_u16(self, characteristic: str, what: str) -> int:
        raw = self.transport.read_characteristic(DEVICE_SERVICE_UUID, characteristic)
        dec = FieldDecoder(raw)
        value = dec.read_count()
        if dec.error is not None:
            logger.warning("could not decode %s value %r", what, raw, extra={"device": self.address})
        dec.check()
        return value

    def num_data(self) -> int:
        """Number of samples stored on the device"""
        return self._read_u16(READ_TOTAL_READINGS_UUID, "total readings")

    def since(self) -> timedelta:
        """Time elapsed since the last measurement"""
        return timedelta(seconds=self._read_u16(READ_SECONDS_SINCE_UPDATE_UUID, "seconds since update"))

    def interval(self) -> timedelta:
        """Sampling interval of the device"""
        return timedelta(seconds=self._read_u16(READ_INTERVAL_UUID, "interval"))

    def read_all(self, now: Optional[datetime] = None) -> List[Sample]:
        """
        Fetch the whole history stored on the device, oldest first.

        Any failure aborts the whole read; no partial history is returned.
        """
        if now is None:
            now = _utc_now()
        ago = self.since()
        delta = self.interval()
        n = self.num_data()
        logger.info("reading history", extra={"device": self.address, "count": n})

        slots = [SampleSlot() for _ in range(n)]
        for param in TIME_SERIES_PARAMS:
            try:
                fetch_time_series(self.transport, param, slots, timeout=self.fetch_timeout)
            except AranetError as exc:
                logger.warning(
                    "could not read time series: %s", exc,
                    extra={"device": self.address, "param": param.name},
                )
                raise

        if n == 0:
            return []
        begin = now - ago - (n - 1) * delta
        return [slot.to_sample(begin + i * delta, delta) for i, slot in enumerate(slots)]


def open_device(address: str, timeout: float = 30.0, fetch_timeout: float = 30.0) -> AranetDevice:
    """Connect to the Aranet4 at address over BLE."""
    transport = BleakTransport(address, timeout=timeout)
    try:
        transport.connect()
    except AranetError:
        transport.close()
        raise
    return AranetDevice(transport, address=address, fetch_timeout=fetch_timeout)
