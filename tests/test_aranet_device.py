import struct
from datetime import datetime, timedelta, timezone

import pytest

from aranet_device import AranetDevice
from ble_transport import (
    COMMON_SERVICE_UUID,
    DEVICE_NAME_UUID,
    DEVICE_SERVICE_UUID,
    GENERIC_SERVICE_UUID,
    READ_ALL_UUID,
    READ_INTERVAL_UUID,
    SW_REVISION_UUID,
)
from conftest import make_page
from errors import NoDataError, ProtocolMismatchError, ShortBufferError, TransportError
from sensor_models import BATTERY_UNKNOWN, Param, Quality

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _history(transport, co2=(400, 410, 420)):
    n = len(co2)
    transport.set_history(
        ago=10,
        interval=60,
        series={
            Param.TEMPERATURE: [440 + i for i in range(n)],
            Param.HUMIDITY: [40 + i for i in range(n)],
            Param.PRESSURE: [10100 + i for i in range(n)],
            Param.CO2: list(co2),
        },
    )


def test_read_all_assembles_timestamps_and_fields(transport) -> None:
    _history(transport)
    device = AranetDevice(transport, fetch_timeout=5)

    samples = device.read_all(now=NOW)

    assert [s.time for s in samples] == [
        NOW - timedelta(seconds=130),
        NOW - timedelta(seconds=70),
        NOW - timedelta(seconds=10),
    ]
    assert [s.co2 for s in samples] == [400, 410, 420]
    assert [s.quality for s in samples] == [Quality.GREEN] * 3
    assert [s.temperature for s in samples] == [22.0, 22.05, 22.1]
    assert [s.humidity for s in samples] == [40.0, 41.0, 42.0]
    assert samples[0].pressure == pytest.approx(1010.0)
    assert all(s.interval == timedelta(minutes=1) for s in samples)
    assert all(s.battery == BATTERY_UNKNOWN for s in samples)

    requested = [data[1] for _, _, data in transport.writes]
    assert requested == [Param.TEMPERATURE, Param.HUMIDITY, Param.PRESSURE, Param.CO2]


def test_read_all_recomputes_quality(transport) -> None:
    _history(transport, co2=(999, 1000, 1400))

    samples = AranetDevice(transport, fetch_timeout=5).read_all(now=NOW)

    assert [s.quality for s in samples] == [Quality.GREEN, Quality.YELLOW, Quality.RED]


def test_read_all_aborts_on_parameter_failure(transport) -> None:
    _history(transport)
    transport.pages[Param.PRESSURE] = [make_page(Param.CO2, 1, [400])]

    with pytest.raises(ProtocolMismatchError):
        AranetDevice(transport, fetch_timeout=5).read_all(now=NOW)

    # CO2 is never requested once pressure failed
    assert Param.CO2 not in [data[1] for _, _, data in transport.writes]


def test_read_all_empty_history(transport) -> None:
    transport.set_history(ago=0, interval=60, series={p: [] for p in Param})
    for param in Param:
        transport.pages[param] = [make_page(param, 0, [], count=0)]

    assert AranetDevice(transport, fetch_timeout=5).read_all(now=NOW) == []


def test_read_current_sample(transport) -> None:
    raw = (
        struct.pack("<H", 1450)      # CO2
        + struct.pack("<H", 430)     # T
        + struct.pack("<H", 10050)   # P
        + bytes([38, 91, 1])         # H, battery, quality (stale)
        + struct.pack("<H", 300)     # interval
        + struct.pack("<H", 20)      # seconds ago
    )
    transport.values[(DEVICE_SERVICE_UUID, READ_ALL_UUID)] = raw

    sample = AranetDevice(transport).read(now=NOW)

    assert sample.co2 == 1450
    assert sample.temperature == 21.5
    assert sample.pressure == pytest.approx(1005.0)
    assert sample.humidity == 38.0
    assert sample.battery == 91
    assert sample.quality == Quality.RED
    assert sample.interval == timedelta(minutes=5)
    assert sample.time == NOW - timedelta(seconds=20)
    assert "CO2:         1450 ppm" in str(sample)
    assert "quality:     red" in str(sample)


def test_read_current_sample_during_calibration(transport) -> None:
    raw = struct.pack("<H", 0x8000) + bytes(11)
    transport.values[(DEVICE_SERVICE_UUID, READ_ALL_UUID)] = raw

    with pytest.raises(NoDataError):
        AranetDevice(transport).read(now=NOW)


def test_interval_short_buffer(transport) -> None:
    transport.values[(DEVICE_SERVICE_UUID, READ_INTERVAL_UUID)] = b"\x3c"

    with pytest.raises(ShortBufferError):
        AranetDevice(transport).interval()


def test_metadata_and_transport_errors(transport) -> None:
    transport.values[(COMMON_SERVICE_UUID, SW_REVISION_UUID)] = b"v1.4.19\x00"
    device = AranetDevice(transport)

    assert device.version() == "v1.4.19"
    with pytest.raises(TransportError):
        device.name()


def test_name_falls_back_to_advertised_name(transport) -> None:
    transport.peripheral_name = "Aranet4 1A2B3"

    assert AranetDevice(transport).name() == "Aranet4 1A2B3"


def test_name_prefers_gap_device_name(transport) -> None:
    transport.values[(GENERIC_SERVICE_UUID, DEVICE_NAME_UUID)] = b"Aranet4 0C1D2\x00"
    transport.peripheral_name = "ignored"

    assert AranetDevice(transport).name() == "Aranet4 0C1D2"


def test_context_manager_closes_transport(transport) -> None:
    with AranetDevice(transport):
        pass
    assert transport.closed
