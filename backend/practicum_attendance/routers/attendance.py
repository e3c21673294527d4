"""
Router de consultation des présences (historique, journée, heures, statistiques).
Les listes passent par le cache local ; l'API externe reste la source de vérité.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from practicum_attendance.database import get_db
from practicum_attendance.routers.capture import api_error_to_http
from practicum_attendance.schemas.attendance import (
    AttendanceFilters,
    AttendanceListResponse,
    AttendanceRecord,
)
from practicum_attendance.schemas.hours import AttendanceStatsResponse, DayHoursResponse
from practicum_attendance.services import attendance_cache
from practicum_attendance.services.attendance_api import (
    AttendanceApiClient,
    AttendanceApiError,
    get_attendance_api,
)
from practicum_attendance.services.attendance_stats import compute_student_stats
from practicum_attendance.services.session_hours import day_hours

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


@router.get("", response_model=AttendanceListResponse,
            summary="Lister les présences")
def list_attendance(
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = None,
    approval_status: Optional[str] = None,
    student_id: Optional[str] = None,
    practicum_id: Optional[str] = None,
    date_filter: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    api: AttendanceApiClient = Depends(get_attendance_api),
):
    """
    Liste paginée des présences. status / approval_status acceptent "all".
    Les réponses sont mises en cache ATTENDANCE_CACHE_TTL_SECONDS secondes.
    """
    try:
        filters = AttendanceFilters(
            page=page, limit=limit, search=search, status=status,
            approval_status=approval_status, student_id=student_id,
            practicum_id=practicum_id, date=date_filter,
            start_date=start_date, end_date=end_date,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])
    try:
        return attendance_cache.get_attendance_list(db, api, filters)
    except AttendanceApiError as e:
        raise api_error_to_http(e)


@router.get("/today", response_model=Optional[AttendanceRecord], summary="Présence du jour")
def get_today(
    student_id: str,
    practicum_id: Optional[str] = None,
    api: AttendanceApiClient = Depends(get_attendance_api),
):
    """Enregistrement du jour de l'élève, ou null s'il n'a pas encore pointé."""
    try:
        return api.get_today(student_id, practicum_id)
    except AttendanceApiError as e:
        raise api_error_to_http(e)


@router.get("/stats", response_model=AttendanceStatsResponse, summary="Statistiques d'un élève")
def get_stats(
    student_id: str,
    practicum_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    operating_days: Optional[str] = None,
    db: Session = Depends(get_db),
    api: AttendanceApiClient = Depends(get_attendance_api),
):
    """
    Jours attendus / présents, heures totales et approuvées sur la période.
    Sans operating_days, les jours d'ouverture de l'organisme (premier enregistrement)
    sont utilisés, puis lundi → vendredi.
    """
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="La date de début doit précéder la date de fin.")
    filters = AttendanceFilters(
        student_id=student_id, practicum_id=practicum_id,
        start_date=start_date, end_date=end_date,
    )
    try:
        records = attendance_cache.get_student_history(db, api, filters)
    except AttendanceApiError as e:
        raise api_error_to_http(e)

    if operating_days is None:
        operating_days = next((r.operating_days for r in records if r.operating_days), None)
    return compute_student_stats(student_id, records, start_date, end_date, operating_days)


@router.get("/{attendance_id}/hours", response_model=DayHoursResponse, summary="Heures d'une journée")
def get_day_hours(attendance_id: str, api: AttendanceApiClient = Depends(get_attendance_api)):
    """Heures par segment, pause déjeuner et total d'une journée."""
    try:
        record = api.get_attendance(attendance_id)
    except AttendanceApiError as e:
        raise api_error_to_http(e)
    return day_hours(record)
