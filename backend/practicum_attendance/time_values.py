"""
Lecture des horodatages renvoyés par l'API externe.

Module sans dépendance interne : utilisé par les schémas (validation à la
frontière) comme par les calculs d'heures et de remarques.
"""

from datetime import datetime, time
from typing import Optional, Union

TimeValue = Union[str, datetime, time, None]

# Formats horaires acceptés en plus de l'ISO 8601
_TIME_FORMATS = ("%H:%M:%S", "%H:%M", "%I:%M:%S %p", "%I:%M %p")


def parse_time_value(value: TimeValue) -> Optional[Union[datetime, time]]:
    """
    Convertit un horodatage de l'API en datetime (date connue) ou time (heure seule).
    Retourne None si la valeur est vide ; lève ValueError si elle est illisible.
    """
    if value is None:
        return None
    if isinstance(value, (datetime, time)):
        return value
    raw = value.strip()
    if not raw:
        return None

    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue

    # fromisoformat ne gère le suffixe "Z" qu'à partir de Python 3.11
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"Horodatage illisible : {value!r}")
