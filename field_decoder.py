"""
Field decoder for Aranet4 payloads
Reads fixed-width little-endian fields one after the other
"""

import struct
from datetime import datetime, timedelta, timezone
from typing import Optional

from errors import AranetError, NoDataError, ShortBufferError, UnknownFieldError
from sensor_models import Param

NO_DATA_FLAG = 0x8000          # high bit on CO2 and pressure
TEMPERATURE_NO_DATA = 0x4000
TEMPERATURE_UNDERFLOW = 0x8000  # anything above reads as 0°C


class FieldDecoder:
    """
    Sequential reader over a notification or characteristic payload.

    Every read advances the cursor by one or two bytes and returns the decoded
    value. The first failure (sentinel or truncated buffer) is kept in
    ``error``; from then on every read returns None without consuming bytes,
    so a run of reads is checked once with ``check()``.
    """

    def __init__(self, buf: bytes):
        self.buf = bytes(buf)
        self.pos = 0
        self.error: Optional[AranetError] = None

    @property
    def remaining(self) -> int:
        return len(self.buf) - self.pos

    def check(self):
        """Raise the first error met by this decoder, if any"""
        if self.error is not None:
            raise self.error

    def _fail(self, err: AranetError):
        self.error = err
        return None

    def _load1(self) -> Optional[int]:
        if self.error is not None:
            return None
        if self.remaining < 1:
            return self._fail(ShortBufferError(f"need 1 byte at offset {self.pos}, have {self.remaining}"))
        value = self.buf[self.pos]
        self.pos += 1
        return value

    def _load2(self) -> Optional[int]:
        if self.error is not None:
            return None
        if self.remaining < 2:
            return self._fail(ShortBufferError(f"need 2 bytes at offset {self.pos}, have {self.remaining}"))
        (value,) = struct.unpack_from('<H', self.buf, self.pos)
        self.pos += 2
        return value

    def read_co2(self) -> Optional[int]:
        raw = self._load2()
        if raw is None:
            return None
        if raw & NO_DATA_FLAG:
            return self._fail(NoDataError("co2"))
        return raw

    def read_temperature(self) -> Optional[float]:
        raw = self._load2()
        if raw is None:
            return None
        if raw == TEMPERATURE_NO_DATA:
            return self._fail(NoDataError("temperature"))
        if raw > TEMPERATURE_UNDERFLOW:
            return 0.0
        return raw / 20

    def read_pressure(self) -> Optional[float]:
        raw = self._load2()
        if raw is None:
            return None
        if raw & NO_DATA_FLAG:
            return self._fail(NoDataError("pressure"))
        return raw / 10

    def read_humidity(self) -> Optional[float]:
        raw = self._load1()
        return None if raw is None else float(raw)

    def read_battery(self) -> Optional[int]:
        return self._load1()

    def read_quality(self) -> Optional[int]:
        # raw class code only, callers recompute quality from CO2
        return self._load1()

    def read_interval(self) -> Optional[timedelta]:
        raw = self._load2()
        return None if raw is None else timedelta(seconds=raw)

    def read_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Decode a 'seconds ago' field into an absolute UTC time"""
        ago = self.read_interval()
        if ago is None:
            return None
        if now is None:
            now = datetime.now(timezone.utc).replace(microsecond=0)
        return now - ago

    def read_count(self) -> Optional[int]:
        return self._load2()

    def read_field(self, param: int):
        """Read one value of a time-series parameter"""
        if self.error is not None:
            return None
        if param == Param.TEMPERATURE:
            return self.read_temperature()
        if param == Param.HUMIDITY:
            return self.read_humidity()
        if param == Param.PRESSURE:
            return self.read_pressure()
        if param == Param.CO2:
            return self.read_co2()
        return self._fail(UnknownFieldError(f"unknown field id={param}"))
