"""
Persistent sample store
Fixed-size binary records keyed by UNIX time, and the merge of freshly fetched
samples with what is already stored
"""

from __future__ import annotations

import logging
import os
import struct
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from functools import cmp_to_key, lru_cache
from pathlib import Path
from threading import Condition, Lock
from typing import Dict, Iterable, Iterator, List, Optional

from errors import RecordRangeError, ShortBufferError, StoreError
from sensor_models import BATTERY_UNKNOWN, Sample
from settings import get_settings

logger = logging.getLogger(__name__)

# time, humidity, pressure*10, temperature*100, CO2, battery, interval (minutes)
RECORD = struct.Struct('<QBHHHBB')
RECORD_SIZE = RECORD.size  # 17
KEY = struct.Struct('<Q')
ENTRY_SIZE = KEY.size + RECORD_SIZE

BATTERY_UNKNOWN_BYTE = 0xFF

# Timestamps closer than this are the same point in time
TIME_RESOLUTION = 5  # seconds


def _unix(sample: Sample) -> int:
    return int(sample.time.timestamp())


def _checked(field: str, value, raw: int, limit: int) -> int:
    if not 0 <= raw <= limit:
        raise RecordRangeError(field, value)
    return raw


def encode_record(sample: Sample) -> bytes:
    """
    Encode a sample into its 17-byte record. Quality is not stored.

    Raises RecordRangeError when a value does not fit its field, e.g. a
    temperature above 655.35°C.
    """
    battery = BATTERY_UNKNOWN_BYTE if sample.battery == BATTERY_UNKNOWN else sample.battery
    return RECORD.pack(
        _checked("time", sample.time, _unix(sample), 0xFFFFFFFFFFFFFFFF),
        _checked("humidity", sample.humidity, int(round(sample.humidity)), 0xFF),
        _checked("pressure", sample.pressure, int(round(sample.pressure * 10)), 0xFFFF),
        _checked("temperature", sample.temperature, int(round(sample.temperature * 100)), 0xFFFF),
        _checked("co2", sample.co2, sample.co2, 0xFFFF),
        _checked("battery", sample.battery, battery, 0xFF),
        _checked("interval", sample.interval, int(sample.interval.total_seconds() // 60), 0xFF),
    )


def decode_record(buf: bytes) -> Sample:
    if len(buf) != RECORD_SIZE:
        raise ShortBufferError(f"record must be {RECORD_SIZE} bytes, got {len(buf)}")
    unix, humidity, pressure, temperature, co2, battery, interval = RECORD.unpack(buf)
    return Sample(
        time=datetime.fromtimestamp(unix, tz=timezone.utc),
        temperature=temperature / 100,
        humidity=float(humidity),
        pressure=pressure / 10,
        co2=co2,
        battery=BATTERY_UNKNOWN if battery == BATTERY_UNKNOWN_BYTE else battery,
        interval=timedelta(minutes=interval),
    )


def lt_approx(a: Sample, b: Sample) -> bool:
    """a is strictly before b, ignoring differences below TIME_RESOLUTION"""
    at, bt = _unix(a), _unix(b)
    if abs(at - bt) < TIME_RESOLUTION:
        return False
    return at < bt


def _cmp_approx(a: Sample, b: Sample) -> int:
    if lt_approx(a, b):
        return -1
    if lt_approx(b, a):
        return 1
    return 0


def sort_approx(samples: Iterable[Sample]) -> List[Sample]:
    return sorted(samples, key=cmp_to_key(_cmp_approx))


class ReadWriteLock:
    """Many readers or a single writer"""

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SampleStore:
    """
    Append-only log of (8-byte little-endian UNIX time, 17-byte record)
    entries, indexed in memory by time. A later entry for the same second
    replaces the earlier one.

    ``last`` is the most recent sample written; merge() only persists samples
    that come after it.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._index: Dict[int, bytes] = {}
        self._last: Optional[Sample] = None
        self._lock = ReadWriteLock()
        if path:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @property
    def last(self) -> Optional[Sample]:
        with self._lock.read():
            return self._last

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._index)

    def rows(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Sample]:
        """Stored samples in time order, optionally limited to [start, end]"""
        lo = int(start.timestamp()) if start else None
        hi = int(end.timestamp()) if end else None
        with self._lock.read():
            keys = sorted(self._index)
            records = [
                self._index[k] for k in keys
                if (lo is None or k >= lo) and (hi is None or k <= hi)
            ]
        return [decode_record(rec) for rec in records]

    def merge(self, batch: Iterable[Sample]) -> int:
        """
        Persist the samples of batch that are newer than ``last``.

        Returns the number of samples written.
        """
        ordered = sort_approx(batch)
        if not ordered:
            return 0

        with self._lock.write():
            idx = len(ordered)
            for i, sample in enumerate(ordered):
                if self._last is None or lt_approx(self._last, sample):
                    idx = i
                    break
            fresh = ordered[idx:]
            if not fresh:
                return 0

            entries = []
            written = []
            for sample in fresh:
                try:
                    entries.append((_unix(sample), encode_record(sample)))
                except RecordRangeError as exc:
                    # dropped; the rest of the batch is still written
                    logger.warning("skipping sample at %s: %s", sample.time, exc)
                    continue
                written.append(sample)
            if not written:
                return 0

            self._persist(entries)
            for key, rec in entries:
                self._index[key] = rec
            for sample in written:
                if self._last is None or lt_approx(self._last, sample):
                    self._last = sample

        logger.info("wrote new samples", extra={"written": len(written)})
        return len(written)

    def _persist(self, entries) -> None:
        if not self.path:
            return
        try:
            with open(self.path, "ab") as f:
                for key, rec in entries:
                    f.write(KEY.pack(key))
                    f.write(rec)
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise StoreError(f"could not write {len(entries)} samples to {self.path}: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.path or not self.path.exists():
            return

        raw = self.path.read_bytes()
        usable = len(raw) - len(raw) % ENTRY_SIZE
        if usable != len(raw):
            logger.warning(
                "dropping truncated trailing entry in %s (%d bytes)", self.path, len(raw) - usable,
            )
            # keep later appends aligned on entry boundaries
            with open(self.path, "rb+") as f:
                f.truncate(usable)
        for off in range(0, usable, ENTRY_SIZE):
            (key,) = KEY.unpack_from(raw, off)
            self._index[key] = raw[off + KEY.size:off + ENTRY_SIZE]

        last_key = None
        for key in sorted(self._index):
            if last_key is None or key - last_key > TIME_RESOLUTION:
                last_key = key
        if last_key is not None:
            self._last = decode_record(self._index[last_key])
        logger.info("loaded samples from %s", self.path, extra={"count": len(self._index)})


@lru_cache
def build_default_store(path: Optional[str] = None) -> SampleStore:
    settings = get_settings()
    db_path = settings.db_path if path is None else path
    return SampleStore(path=Path(db_path) if db_path else None)
