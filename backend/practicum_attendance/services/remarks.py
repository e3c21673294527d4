"""
Classification des pointages : remarques (retard, départ anticipé, heures sup.)
et type d'appareil à partir du User-Agent.

Les horaires de référence viennent de l'organisme d'accueil, recopiés dans
l'enregistrement du jour (openingTime, lunchStartTime, lunchEndTime, closingTime).
Sans horaire connu, la remarque est toujours "Normal".
"""

import re
from datetime import datetime, time, timedelta
from typing import Optional, Tuple

from practicum_attendance.config import settings
from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.time_values import parse_time_value

_TABLET_RE = re.compile(r"ipad|tablet|kindle|silk|playbook|(android(?!.*mobile))", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobi|iphone|ipod|android.*mobile|windows phone|blackberry", re.IGNORECASE)

_PLATFORMS = (
    ("Windows", re.compile(r"windows nt", re.IGNORECASE)),
    ("iOS", re.compile(r"iphone|ipad|ipod", re.IGNORECASE)),
    ("Android", re.compile(r"android", re.IGNORECASE)),
    ("macOS", re.compile(r"mac os x|macintosh", re.IGNORECASE)),
    ("Linux", re.compile(r"linux", re.IGNORECASE)),
)
_BROWSERS = (
    ("Edge", re.compile(r"edg/", re.IGNORECASE)),
    ("Opera", re.compile(r"opr/|opera", re.IGNORECASE)),
    ("Chrome", re.compile(r"chrome/|crios/", re.IGNORECASE)),
    ("Firefox", re.compile(r"firefox/|fxios/", re.IGNORECASE)),
    ("Safari", re.compile(r"safari/", re.IGNORECASE)),
)


def _schedule_time(value: Optional[str]) -> Optional[time]:
    """Heure d'horaire ("08:00", "08:00:00") ou None si absente/illisible."""
    try:
        parsed = parse_time_value(value)
    except ValueError:
        return None
    if parsed is None:
        return None
    if isinstance(parsed, datetime):
        return parsed.time()
    return parsed


def _minutes_diff(actual: time, reference: time) -> float:
    """Minutes entre l'heure de référence et l'heure réelle (positif = après)."""
    base = datetime(2000, 1, 1)
    return (
        datetime.combine(base, actual.replace(tzinfo=None))
        - datetime.combine(base, reference.replace(tzinfo=None))
    ) / timedelta(minutes=1)


def classify_time_in(record: Optional[AttendanceRecord], segment: str, at: time) -> str:
    """Remarque d'arrivée : Normal, Late ou Early."""
    if segment == "overtime" or record is None:
        return "Normal"
    reference = _schedule_time(
        record.opening_time if segment == "morning" else record.lunch_end_time
    )
    if reference is None:
        return "Normal"

    diff = _minutes_diff(at, reference)
    if diff > settings.LATE_GRACE_MINUTES:
        return "Late"
    if diff < -settings.EARLY_ARRIVAL_MINUTES:
        return "Early"
    return "Normal"


def classify_time_out(record: Optional[AttendanceRecord], segment: str, at: time) -> str:
    """Remarque de départ : Normal, Early Departure ou Overtime."""
    if segment == "overtime":
        return "Overtime"
    if record is None:
        return "Normal"

    if segment == "morning":
        reference = _schedule_time(record.lunch_start_time)
        if reference is not None and _minutes_diff(at, reference) < 0:
            return "Early Departure"
        return "Normal"

    reference = _schedule_time(record.closing_time)
    if reference is None:
        return "Normal"
    diff = _minutes_diff(at, reference)
    if diff < 0:
        return "Early Departure"
    if diff > settings.OVERTIME_THRESHOLD_MINUTES:
        return "Overtime"
    return "Normal"


def classify_device(user_agent: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Déduit (deviceType, deviceUnit) du User-Agent.
    deviceUnit est un libellé lisible, ex. "Chrome on Android".
    """
    if not user_agent:
        return "Desktop", None

    if _TABLET_RE.search(user_agent):
        device_type = "Tablet"
    elif _MOBILE_RE.search(user_agent):
        device_type = "Mobile"
    else:
        device_type = "Desktop"

    platform = next((name for name, rx in _PLATFORMS if rx.search(user_agent)), None)
    browser = next((name for name, rx in _BROWSERS if rx.search(user_agent)), None)

    if browser and platform:
        unit = f"{browser} on {platform}"
    else:
        unit = browser or platform

    return device_type, unit
