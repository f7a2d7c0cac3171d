"""
Time-series notifications from the Aranet4
Requests the history of one parameter and decodes the pages the device notifies
"""

import concurrent.futures
import logging
import struct
from dataclasses import dataclass
from typing import List

from ble_transport import DEVICE_SERVICE_UUID, READ_TIME_SERIES_UUID, WRITE_CMD_UUID, Transport
from errors import AranetError, FetchTimeoutError, ProtocolMismatchError, ShortBufferError
from field_decoder import FieldDecoder
from sensor_models import SampleSlot

logger = logging.getLogger(__name__)

CMD_READ_TIME_SERIES = 0x82
FIRST_INDEX = 0x0001
LAST_INDEX = 0xFFFF

PAGE_HEADER = struct.Struct('<BHB')  # param, start index (1-based), count


def build_time_series_command(param: int, start: int = FIRST_INDEX, end: int = LAST_INDEX) -> bytes:
    """Opcode (1 byte) + param (1 byte) + reserved (2 bytes) + start (2 bytes) + end (2 bytes)"""
    return struct.pack('<BBHHH', CMD_READ_TIME_SERIES, param, 0, start, end)


@dataclass
class TimeSeriesPage:
    """One notification chunk of a time series"""
    param: int
    start: int
    count: int
    payload: bytes

    @staticmethod
    def parse(data: bytes) -> 'TimeSeriesPage':
        if len(data) < PAGE_HEADER.size:
            raise ShortBufferError(f"time-series page too short ({len(data)} bytes)")
        param, start, count = PAGE_HEADER.unpack_from(data)
        return TimeSeriesPage(param=param, start=start, count=count, payload=bytes(data[PAGE_HEADER.size:]))

    @property
    def last(self) -> bool:
        return self.count == 0


class PagedFetch:
    """
    Consumes the pages of one parameter into a destination array.

    handle_notify() runs on the transport's notification thread. The outcome
    (end of stream or the first error) is published once through ``done``;
    pages arriving after that are ignored.
    """

    def __init__(self, param: int, dst: List[SampleSlot]):
        self.param = param
        self.dst = dst
        self.done: concurrent.futures.Future = concurrent.futures.Future()
        self.pages = 0

    def handle_notify(self, data: bytes):
        if self.done.done():
            return
        try:
            page = TimeSeriesPage.parse(data)
            if page.param != self.param:
                raise ProtocolMismatchError(got=page.param, want=self.param)
            if page.last:
                self.done.set_result(self.pages)
                return
            self.apply(page)
        except AranetError as exc:
            self.done.set_exception(exc)

    def apply(self, page: TimeSeriesPage):
        """Decode a page into dst[start-1 : start-1+count]"""
        if page.start < FIRST_INDEX:
            raise ShortBufferError(f"malformed time-series page: start index {page.start}")
        first = page.start - 1
        # a new sample may have appeared on the device since the count was read
        end = min(first + page.count, len(self.dst))
        dec = FieldDecoder(page.payload)
        for i in range(first, end):
            value = dec.read_field(self.param)
            dec.check()
            self.dst[i].set_field(self.param, value)
        self.pages += 1
        logger.debug(
            "time-series page",
            extra={"param": self.param, "start": page.start, "count": page.count},
        )


def fetch_time_series(transport: Transport, param: int, dst: List[SampleSlot], timeout: float = 30.0) -> int:
    """
    Fetch the whole history of one parameter into dst.

    Args:
        transport: Connected transport to the device
        param: Parameter id to request
        dst: Pre-sized slots; only the requested field is written
        timeout: Longest wait, in seconds, for the end of the stream

    Returns the number of pages applied. Slots written before a failure are
    left as they are.
    """
    transport.write_characteristic(DEVICE_SERVICE_UUID, WRITE_CMD_UUID, build_time_series_command(param))

    fetch = PagedFetch(param, dst)
    handle = transport.subscribe(DEVICE_SERVICE_UUID, READ_TIME_SERIES_UUID, fetch.handle_notify)
    try:
        try:
            pages = fetch.done.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            raise FetchTimeoutError(
                f"no end of time series for param={param} after {timeout}s ({fetch.pages} pages)"
            ) from exc
    except BaseException:
        # an unsubscribe failure must not replace the fetch error
        try:
            transport.unsubscribe(handle)
        except AranetError as exc:
            logger.warning("could not unsubscribe after failed fetch: %s", exc, extra={"param": param})
        raise
    transport.unsubscribe(handle)
    return pages
