"""Exceptions raised while talking to an Aranet4 or storing its samples."""


class AranetError(Exception):
    """Base class for every error raised by this package"""


class NoDataError(AranetError):
    """A field holds its 'no data' sentinel, e.g. while the sensor calibrates"""

    def __init__(self, field: str = ""):
        self.field = field
        super().__init__(f"no data for {field}" if field else "no data")


class ShortBufferError(AranetError):
    """Payload or record is truncated or has the wrong length"""


class UnknownFieldError(AranetError, ValueError):
    """Parameter id has no decoding rule"""


class ProtocolMismatchError(AranetError):
    """A notification echoed another parameter id than the one requested"""

    def __init__(self, got: int, want: int):
        self.got = got
        self.want = want
        super().__init__(f"invalid parameter: got=0x{got:02x}, want=0x{want:02x}")


class TransportError(AranetError):
    """Reading, writing or subscribing to a characteristic failed"""


class FetchTimeoutError(AranetError, TimeoutError):
    """The device stopped notifying before the end of the time series"""


class StoreError(AranetError):
    """Samples could not be written to the store"""


class RecordRangeError(StoreError, ValueError):
    """A sample value does not fit its field in the on-disk record"""

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"{field}={value!r} does not fit in the record")
