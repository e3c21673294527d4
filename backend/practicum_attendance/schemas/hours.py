"""
Schémas Pydantic des vues calculées : heures d'une journée et statistiques d'un élève.
"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel


class DayHoursResponse(BaseModel):
    """Heures travaillées d'une journée, par segment."""
    attendance_id: str
    date: dt.date
    morning_hours: float
    afternoon_hours: float
    overtime_hours: float
    legacy_hours: float           # Paire timeIn/timeOut des anciens enregistrements
    lunch_hours: Optional[float]  # None si matin-sortie ou après-midi-entrée manquant
    lunch_label: Optional[str]    # "1h", "1h 30m", "45m"
    total_hours: float
    from_server: bool             # True si total_hours provient du champ serveur `hours`


class AttendanceStatsResponse(BaseModel):
    """Synthèse des présences d'un élève sur la période de stage."""
    student_id: str
    expected_days: int
    attended_days: int
    attendance_percentage: float
    total_hours: float
    approved_records: int
    declined_records: int
    approved_hours: float
    average_daily_hours: float    # Moyenne sur les journées approuvées, 1 décimale
