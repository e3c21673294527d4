"""
Calcul des heures travaillées par session (lecture seule sur les horodatages).

Le total d'une journée est la somme des segments travaillés (matin + après-midi
+ heures sup.) : la pause de midi n'est jamais soustraite d'une plage
arrivée → départ, elle n'en fait simplement pas partie.
Le champ `hours` renvoyé par le serveur reste prioritaire quand il est présent.
"""

import math
from datetime import date, datetime, time
from typing import Optional, Union

from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.schemas.hours import DayHoursResponse
from practicum_attendance.time_values import TimeValue, parse_time_value


def _seconds_between(start: Union[datetime, time], end: Union[datetime, time]) -> float:
    # Dès qu'un des deux côtés n'a pas de date, on compare des heures de la journée
    if isinstance(start, datetime) and isinstance(end, datetime):
        if (start.tzinfo is None) != (end.tzinfo is None):
            start, end = start.replace(tzinfo=None), end.replace(tzinfo=None)
        return (end - start).total_seconds()

    start_t = start.timetz() if isinstance(start, datetime) else start
    end_t = end.timetz() if isinstance(end, datetime) else end
    ref = date(2000, 1, 1)
    return (
        datetime.combine(ref, end_t.replace(tzinfo=None))
        - datetime.combine(ref, start_t.replace(tzinfo=None))
    ).total_seconds()


def _round2(value: float) -> float:
    """Arrondi à 2 décimales, demi vers le haut."""
    return math.floor(value * 100 + 0.5) / 100


def session_hours(time_in: TimeValue, time_out: TimeValue) -> float:
    """
    Durée en heures entre arrivée et départ, bornée à 0, arrondie à 2 décimales.
    Retourne 0 si l'une des deux bornes est absente.
    """
    start = parse_time_value(time_in)
    end = parse_time_value(time_out)
    if start is None or end is None:
        return 0.0
    hours = _seconds_between(start, end) / 3600
    return _round2(max(hours, 0.0))


def lunch_duration(morning_out: TimeValue, afternoon_in: TimeValue) -> Optional[float]:
    """Pause de midi en heures, uniquement si les deux horodatages sont connus."""
    if parse_time_value(morning_out) is None or parse_time_value(afternoon_in) is None:
        return None
    return session_hours(morning_out, afternoon_in)


def format_duration(hours: float) -> str:
    """Formate une durée : "1h 30m", "1h" ou "45m"."""
    total_minutes = int(math.floor(hours * 60 + 0.5))
    h, m = divmod(total_minutes, 60)
    if h and m:
        return f"{h}h {m}m"
    if h:
        return f"{h}h"
    return f"{m}m"


def total_hours(record: Optional[AttendanceRecord]) -> float:
    """
    Total de la journée : champ serveur `hours` s'il est renseigné,
    sinon somme des segments (ou de la paire historique).
    """
    if record is None:
        return 0.0
    if record.hours is not None:
        return record.hours
    if record.is_segmented():
        return _round2(
            session_hours(record.morning_time_in, record.morning_time_out)
            + session_hours(record.afternoon_time_in, record.afternoon_time_out)
            + session_hours(record.overtime_time_in, record.overtime_time_out)
        )
    return session_hours(record.time_in, record.time_out)


def day_hours(record: AttendanceRecord) -> DayHoursResponse:
    """Vue complète des heures d'une journée (par segment, pause, total)."""
    lunch = lunch_duration(record.morning_time_out, record.afternoon_time_in)
    return DayHoursResponse(
        attendance_id=record.id,
        date=record.date,
        morning_hours=session_hours(record.morning_time_in, record.morning_time_out),
        afternoon_hours=session_hours(record.afternoon_time_in, record.afternoon_time_out),
        overtime_hours=session_hours(record.overtime_time_in, record.overtime_time_out),
        legacy_hours=session_hours(record.time_in, record.time_out),
        lunch_hours=lunch,
        lunch_label=format_duration(lunch) if lunch is not None else None,
        total_hours=total_hours(record),
        from_server=record.hours is not None,
    )
