import struct
from datetime import datetime, timedelta, timezone

import pytest

from errors import NoDataError, ShortBufferError, UnknownFieldError
from field_decoder import FieldDecoder
from sensor_models import Param


def u16(value: int) -> bytes:
    return struct.pack("<H", value)


def test_co2_value_and_sentinel() -> None:
    assert FieldDecoder(u16(420)).read_co2() == 420

    dec = FieldDecoder(u16(0x8000))
    assert dec.read_co2() is None
    with pytest.raises(NoDataError):
        dec.check()


def test_temperature_rules() -> None:
    assert FieldDecoder(u16(450)).read_temperature() == 22.5
    assert FieldDecoder(u16(0x9000)).read_temperature() == 0
    assert FieldDecoder(u16(0x8000)).read_temperature() == 0x8000 / 20

    dec = FieldDecoder(u16(0x4000))
    assert dec.read_temperature() is None
    assert isinstance(dec.error, NoDataError)


def test_pressure_rules() -> None:
    assert FieldDecoder(u16(10132)).read_pressure() == pytest.approx(1013.2)

    dec = FieldDecoder(u16(0x8001))
    assert dec.read_pressure() is None
    assert isinstance(dec.error, NoDataError)


def test_single_byte_fields() -> None:
    dec = FieldDecoder(bytes([45, 87, 2]))
    assert dec.read_humidity() == 45.0
    assert dec.read_battery() == 87
    assert dec.read_quality() == 2
    assert dec.remaining == 0
    dec.check()


def test_interval_and_time() -> None:
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    dec = FieldDecoder(u16(300) + u16(42))
    assert dec.read_interval() == timedelta(minutes=5)
    assert dec.read_time(now) == now - timedelta(seconds=42)


def test_short_buffer_poisons_decoder() -> None:
    dec = FieldDecoder(bytes([0x01]))
    assert dec.read_co2() is None
    assert isinstance(dec.error, ShortBufferError)

    # later reads neither consume bytes nor replace the first error
    first = dec.error
    assert dec.read_humidity() is None
    assert dec.pos == 0
    assert dec.error is first
    with pytest.raises(ShortBufferError):
        dec.check()


def test_no_data_poisons_following_reads() -> None:
    dec = FieldDecoder(u16(0x8000) + u16(450) + bytes([50]))
    dec.read_co2()
    pos = dec.pos
    assert dec.read_temperature() is None
    assert dec.read_humidity() is None
    assert dec.pos == pos
    with pytest.raises(NoDataError):
        dec.check()


def test_read_field_dispatch() -> None:
    dec = FieldDecoder(u16(450) + bytes([40]) + u16(10000) + u16(800))
    assert dec.read_field(Param.TEMPERATURE) == 22.5
    assert dec.read_field(Param.HUMIDITY) == 40.0
    assert dec.read_field(Param.PRESSURE) == 1000.0
    assert dec.read_field(Param.CO2) == 800
    dec.check()


def test_read_field_unknown_param() -> None:
    dec = FieldDecoder(u16(1))
    assert dec.read_field(9) is None
    with pytest.raises(UnknownFieldError):
        dec.check()
