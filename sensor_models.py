"""
Aranet4 data model
Measured samples, air-quality classes and time-series parameter ids
"""

from datetime import datetime, timedelta
from enum import IntEnum
from dataclasses import dataclass

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Battery level is not part of the history; samples assembled from it carry this
BATTERY_UNKNOWN = -1


class Quality(IntEnum):
    """General assessment of air quality, derived from CO2"""
    GREEN = 1   # [   0 - 1000) ppm
    YELLOW = 2  # [1000 - 1400) ppm
    RED = 3     # [1400 -  ...) ppm

    def __str__(self):
        return self.name.lower()


class Param(IntEnum):
    """Parameter ids understood by the time-series command"""
    TEMPERATURE = 1
    HUMIDITY = 2
    PRESSURE = 3
    CO2 = 4


# Order in which the history is fetched
TIME_SERIES_PARAMS = (Param.TEMPERATURE, Param.HUMIDITY, Param.PRESSURE, Param.CO2)


def quality_from(co2: int) -> Quality:
    if co2 < 1000:
        return Quality.GREEN
    if co2 < 1400:
        return Quality.YELLOW
    return Quality.RED


@dataclass(frozen=True)
class Sample:
    """One measured data sample"""
    time: datetime          # UTC, second resolution
    temperature: float      # °C
    humidity: float         # %
    pressure: float         # hPa
    co2: int                # ppm
    battery: int = BATTERY_UNKNOWN
    interval: timedelta = timedelta(0)

    @property
    def quality(self) -> Quality:
        return quality_from(self.co2)

    def __str__(self):
        lines = [
            f"CO2:         {self.co2} ppm",
            f"temperature: {self.temperature:g}°C",
            f"pressure:    {self.pressure:g} hPa",
            f"humidity:    {self.humidity:g}%",
            f"quality:     {self.quality}",
            f"battery:     {self.battery}%" if self.battery != BATTERY_UNKNOWN else "battery:     n/a",
            f"interval:    {self.interval}",
            f"time-stamp:  {self.time.strftime(TIME_FORMAT)} UTC",
        ]
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "temperature": self.temperature,
            "humidity": self.humidity,
            "pressure": self.pressure,
            "co2": self.co2,
            "battery": self.battery,
            "quality": str(self.quality),
            "interval": int(self.interval.total_seconds()),
        }


@dataclass
class SampleSlot:
    """Mutable row filled one parameter at a time while fetching the history"""
    temperature: float = 0.0
    humidity: float = 0.0
    pressure: float = 0.0
    co2: int = 0

    def set_field(self, param: Param, value):
        if param == Param.TEMPERATURE:
            self.temperature = value
        elif param == Param.HUMIDITY:
            self.humidity = value
        elif param == Param.PRESSURE:
            self.pressure = value
        elif param == Param.CO2:
            self.co2 = value
        else:
            raise ValueError(f"Unknown parameter id: {param}")

    def to_sample(self, time: datetime, interval: timedelta) -> Sample:
        return Sample(
            time=time,
            temperature=self.temperature,
            humidity=self.humidity,
            pressure=self.pressure,
            co2=self.co2,
            battery=BATTERY_UNKNOWN,
            interval=interval,
        )
