"""Datadis record transformation module.

This module handles:
- Typed records for hourly consumption and maximum power readings
- Converting provider date/hour pairs to Unix epoch seconds
- Rendering each record as one InfluxDB line-protocol line

Provider conventions:
- Dates use YYYY/MM/DD and hours use HH:MM
- The last hour of a day is labelled "24:00" and is stored at "00:00"
  of the same nominal date
- Consumption periods are tariff bands (PUNTA, LLANO, VALLE)
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

CONSUMPTION_MEASUREMENT = "datadis_consumption"
POWER_MEASUREMENT = "datadis_power"

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M"


class RecordParseError(Exception):
    """Exception raised when a record cannot be converted."""
    pass


class Period(Enum):
    """Tariff time bands and their canonical codes."""
    PUNTA = "1"  # peak
    LLANO = "2"  # mid
    VALLE = "3"  # off-peak


def period_code(label: str) -> str:
    """Map a period label to its canonical code.

    Unknown labels are returned unchanged.

    Example:
        >>> period_code("VALLE")
        '3'
        >>> period_code("OTRO")
        'OTRO'
    """
    try:
        return Period[label].value
    except KeyError:
        return label


@dataclass
class ConsumptionRecord:
    """A single hourly consumption reading.

    Attributes:
        magnitude: Active energy for the hour
        date: Date in YYYY/MM/DD format
        hour: Hour in HH:MM format (may be "24:00")
        period: Tariff band label
    """
    magnitude: float
    date: str
    hour: str
    period: str

    @classmethod
    def from_json(cls, item: dict) -> "ConsumptionRecord":
        return cls(
            magnitude=item.get("measureMagnitudeActive") or 0.0,
            date=item.get("date", ""),
            hour=item.get("hour", ""),
            period=item.get("period", ""),
        )


@dataclass
class PowerRecord:
    """A maximum demanded power reading.

    Attributes:
        period: Period label, forwarded as-is
        max_power: Maximum demanded power
        date: Date in YYYY/MM/DD format
        time: Time in HH:MM format (may be "24:00")
    """
    period: str
    max_power: float
    date: str
    time: str

    @classmethod
    def from_json(cls, item: dict) -> "PowerRecord":
        return cls(
            period=item.get("period", ""),
            max_power=item.get("maximoPotenciaDemandada") or 0.0,
            date=item.get("date", ""),
            time=item.get("time", ""),
        )


def to_epoch(date: str, hour: str, tz_name: str = "UTC") -> int:
    """Convert a provider date and hour to a Unix epoch timestamp.

    Args:
        date: Date in YYYY/MM/DD format
        hour: Hour in HH:MM format
        tz_name: Timezone the provider values are expressed in

    Returns:
        Unix epoch timestamp in seconds

    Raises:
        RecordParseError: If the date or hour is malformed

    Example:
        >>> to_epoch("2024/05/01", "13:00")
        1714568400
    """
    if hour == "24:00":
        hour = "00:00"

    try:
        dt = datetime.strptime(f"{date} {hour}", TIMESTAMP_FORMAT)
    except (TypeError, ValueError) as e:
        raise RecordParseError(f"Invalid timestamp {date!r} {hour!r}: {e}")

    return int(dt.replace(tzinfo=ZoneInfo(tz_name)).timestamp())


def consumption_line(record: ConsumptionRecord, cups: str, tz_name: str = "UTC") -> str:
    """Render a consumption record as a line-protocol line."""
    timestamp = to_epoch(record.date, record.hour, tz_name)
    return (
        f"{CONSUMPTION_MEASUREMENT},cups={cups},period={period_code(record.period)} "
        f"consumption={record.magnitude:.3f} {timestamp}"
    )


def power_line(record: PowerRecord, cups: str, tz_name: str = "UTC") -> str:
    """Render a maximum power record as a line-protocol line."""
    timestamp = to_epoch(record.date, record.time, tz_name)
    return (
        f"{POWER_MEASUREMENT},cups={cups},period={record.period} "
        f"max_power={record.max_power:.3f} {timestamp}"
    )


def consumption_lines(
    records: Iterable[ConsumptionRecord], cups: str, tz_name: str = "UTC"
) -> List[str]:
    """Render consumption records in source order, one line each."""
    return [consumption_line(record, cups, tz_name) for record in records]


def power_lines(
    records: Iterable[PowerRecord], cups: str, tz_name: str = "UTC"
) -> List[str]:
    """Render power records in source order, one line each."""
    return [power_line(record, cups, tz_name) for record in records]


def measurement_of(line: str) -> Optional[str]:
    """Return the measurement name of a line-protocol line."""
    if not line:
        return None
    return line.split(",", 1)[0]
