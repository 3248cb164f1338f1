"""Parse the time labels shown on the BOM radar page.

The page shows times two ways:

- a "Last updated" block: ``Observations: 6 minutes ago, 9:40 pm AEST at
  Gympie weather station, 24 km from Pomona. Forecast: an hour ago ...``
- a frame label under the map: ``Wednesday 17 Dec, 11:05 pm``

Relative phrasing ("N minutes ago") is preferred because it needs no date
guessing; clock times are interpreted in the configured time zone and moved
back a day (or a year, for frame labels) when they would lie in the future.
All returned datetimes are aware UTC.
"""

import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from radarcache.cache.models import ObservationMetadata, utc_now

logger = logging.getLogger(__name__)

OBSERVATION_MINUTES = re.compile(r"Observations:\s*(\d+)\s*minutes?\s*ago", re.IGNORECASE)
OBSERVATION_CLOCK = re.compile(
    r"Observations:\s*(?:\d+\s*minutes?\s*ago)?[,\s]+([\d:]+(?:\s*[ap]m)?)\s+([A-Z]{3,4})(?:at|\s+at|,|$)",
    re.IGNORECASE,
)
FORECAST_MINUTES = re.compile(r"Forecast:\s*(\d+)\s*minutes?\s*ago", re.IGNORECASE)
FORECAST_HOUR = re.compile(r"Forecast:\s*an\s+hour\s+ago", re.IGNORECASE)
FORECAST_CLOCK = re.compile(
    r"Forecast:\s*(?:an\s+hour\s+ago|\d+\s*minutes?\s*ago)?[,\s]*([\d:]+(?:\s*[ap]m)?)\s+([A-Z]+)(?:\s+at|$)",
    re.IGNORECASE,
)
WEATHER_STATION = re.compile(r"at\s+([^,]+)\s+weather\s+station", re.IGNORECASE)
DISTANCE = re.compile(r"(\d+)\s*km\s+from", re.IGNORECASE)

FRAME_TIMESTAMP = re.compile(r"(?:[A-Za-z]+\s+)?\d{1,2}\s+[A-Za-z]{3},?\s+\d{1,2}:\d{2}\s+(?:am|pm)", re.IGNORECASE)
_FRAME_PARTS = re.compile(r"(\d{1,2})\s+([A-Za-z]{3}),?\s+(\d{1,2}):(\d{2})\s+(am|pm)", re.IGNORECASE)
_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})\s*([ap]m)?$", re.IGNORECASE)

MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

# Frame labels further back than this are rejected as misparsed
MAX_FRAME_MINUTES_AGO = 120


def _to_24h(hour: int, meridiem: Optional[str]) -> int:
    if not meridiem:
        return hour
    meridiem = meridiem.lower()
    if meridiem == "pm" and hour != 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def parse_clock_time(text: str, tz: tzinfo, now: Optional[datetime] = None) -> Optional[datetime]:
    """Interpret a clock time ("9:40 pm", "21:40") as the most recent such moment.

    Args:
        text: Clock time text
        tz: Zone the clock time is expressed in
        now: Reference time (defaults to the current time)

    Returns:
        Aware UTC datetime, or None if the text is not a clock time
    """
    match = _CLOCK.match(text.strip())
    if not match:
        return None
    hour = _to_24h(int(match.group(1)), match.group(3))
    minute = int(match.group(2))
    if hour > 23 or minute > 59:
        return None

    local_now = (now or utc_now()).astimezone(tz)
    local = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if local > local_now:
        local -= timedelta(days=1)
        logger.debug(f"Clock time {text!r} is in the future, using previous day: {local}")
    return local.astimezone(timezone.utc)


def parse_frame_timestamp(label: str, tz: tzinfo, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a frame label such as "Wednesday 17 Dec, 11:05 pm".

    The label carries no year: the current year is assumed, and a result
    more than a day in the future is moved back one year.
    """
    match = FRAME_TIMESTAMP.search(label)
    if not match:
        return None
    parts = _FRAME_PARTS.search(match.group(0))
    if not parts:
        return None
    month_name = parts.group(2).lower()
    if month_name not in MONTHS:
        return None

    local_now = (now or utc_now()).astimezone(tz)
    try:
        local = datetime(
            local_now.year,
            MONTHS.index(month_name) + 1,
            int(parts.group(1)),
            _to_24h(int(parts.group(3)), parts.group(5)),
            int(parts.group(4)),
            tzinfo=tz,
        )
    except ValueError:
        return None
    if local > local_now + timedelta(days=1):
        try:
            local = local.replace(year=local.year - 1)
        except ValueError:
            return None
    return local.astimezone(timezone.utc)


def minutes_ago_from_label(label: Optional[str], tz: tzinfo, now: Optional[datetime] = None) -> Optional[int]:
    """Minutes between a frame label's time and now, if plausible (0-120)."""
    if not label or not label.strip():
        return None
    now = now or utc_now()
    timestamp = parse_frame_timestamp(label.strip(), tz, now)
    if timestamp is None:
        logger.debug(f"Frame label did not match timestamp pattern: {label.strip()!r}")
        return None
    minutes = int((now - timestamp).total_seconds() // 60)
    if 0 <= minutes <= MAX_FRAME_MINUTES_AGO:
        return minutes
    logger.warning(f"Minutes ago ({minutes}) from label {label.strip()!r} outside range 0-{MAX_FRAME_MINUTES_AGO}")
    return None


def _parse_clock_match(match, tz: tzinfo, now: datetime, what: str) -> datetime:
    if match and match.group(1):
        parsed = parse_clock_time(match.group(1).strip(), tz, now)
        if parsed is not None:
            logger.info(f"Used time string fallback for {what} time: {parsed} UTC")
            return parsed
        logger.warning(f"Failed to parse {what} time string {match.group(1)!r}, using current time")
    else:
        logger.warning(f"No {what} time found in text, using current time")
    return now


def parse_last_updated(text: str, tz: tzinfo, now: Optional[datetime] = None) -> ObservationMetadata:
    """Extract observation metadata from the "Last updated" text block.

    Times the text does not reveal default to now, so the resulting cache is
    treated as freshly observed.
    """
    now = now or utc_now()
    logger.debug(f"Parsing last updated text: {text!r}")

    match = OBSERVATION_MINUTES.search(text)
    if match:
        observation_time = now - timedelta(minutes=int(match.group(1)))
    else:
        observation_time = _parse_clock_match(OBSERVATION_CLOCK.search(text), tz, now, "observation")

    match = FORECAST_MINUTES.search(text)
    if match:
        forecast_time = now - timedelta(minutes=int(match.group(1)))
    elif FORECAST_HOUR.search(text):
        forecast_time = now - timedelta(hours=1)
    else:
        forecast_time = _parse_clock_match(FORECAST_CLOCK.search(text), tz, now, "forecast")

    station = WEATHER_STATION.search(text)
    distance = DISTANCE.search(text)

    return ObservationMetadata(
        observation_time=observation_time,
        forecast_time=forecast_time,
        weather_station=station.group(1).strip() if station else None,
        distance=f"{distance.group(1)} km" if distance else None,
    )
