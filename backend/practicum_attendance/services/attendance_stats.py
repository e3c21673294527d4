"""
Statistiques de présence d'un élève sur sa période de stage.
"""

from datetime import date, timedelta
from typing import List, Optional

from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.schemas.hours import AttendanceStatsResponse
from practicum_attendance.services.session_hours import total_hours

DEFAULT_OPERATING_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday")


def expected_attendance_days(
    start_date: Optional[date],
    end_date: Optional[date],
    operating_days: Optional[str],
    today: Optional[date] = None,
) -> int:
    """
    Nombre de jours ouvrés attendus entre le début du stage et min(fin, aujourd'hui).
    operating_days : "Monday, Tuesday, ..." ; lundi → vendredi si vide.
    """
    if start_date is None or end_date is None:
        return 0
    today = today or date.today()
    last_day = min(end_date, today)
    if start_date > last_day:
        return 0

    days = [d.strip() for d in (operating_days or "").split(",") if d.strip()]
    valid_days = set(days or DEFAULT_OPERATING_DAYS)

    count = 0
    current = start_date
    while current <= last_day:
        if current.strftime("%A") in valid_days:
            count += 1
        current += timedelta(days=1)
    return count


def _attended(record: AttendanceRecord) -> bool:
    if record.status is not None:
        return record.status in ("present", "late")
    return bool(record.time_in or record.morning_time_in or record.afternoon_time_in)


def compute_student_stats(
    student_id: str,
    records: List[AttendanceRecord],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    operating_days: Optional[str] = None,
    today: Optional[date] = None,
) -> AttendanceStatsResponse:
    """Synthèse : jours attendus/présents, heures totales et approuvées, moyenne journalière."""
    expected = expected_attendance_days(start_date, end_date, operating_days, today)
    attended = len({r.date for r in records if _attended(r)})

    approved = [r for r in records if r.approval_status == "Approved"]
    declined = [r for r in records if r.approval_status == "Declined"]
    approved_hours = round(sum(total_hours(r) for r in approved), 2)
    average = round(approved_hours / len(approved), 1) if approved else 0.0

    return AttendanceStatsResponse(
        student_id=student_id,
        expected_days=expected,
        attended_days=attended,
        attendance_percentage=round(attended / expected * 100, 2) if expected else 0.0,
        total_hours=round(sum(total_hours(r) for r in records), 2),
        approved_records=len(approved),
        declined_records=len(declined),
        approved_hours=approved_hours,
        average_daily_hours=average,
    )
