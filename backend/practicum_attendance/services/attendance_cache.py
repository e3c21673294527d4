"""
Cache local des listes de présences (équivalent du cache de requêtes de la page).

Une liste consultée est conservée ATTENDANCE_CACHE_TTL_SECONDS ; un pointage
réussi invalide toutes les listes de l'élève ainsi que les listes sans élève
(vues instructeur), qui sont regroupées sous la clé "*".
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from practicum_attendance.config import settings
from practicum_attendance.models.attendance_cache import CachedAttendanceList
from practicum_attendance.schemas.attendance import (
    AttendanceFilters,
    AttendanceListResponse,
    AttendanceRecord,
)
from practicum_attendance.services.attendance_api import AttendanceApiClient

logger = logging.getLogger(__name__)

ALL_STUDENTS_KEY = "*"
MAX_HISTORY_PAGES = 50


def make_query_key(filters: AttendanceFilters) -> str:
    """Clé stable des filtres : paramètres triés "k=v&k=v"."""
    params = filters.to_query_params()
    return "&".join(f"{k}={params[k]}" for k in sorted(params))


def get_attendance_list(
    db: Session,
    api: AttendanceApiClient,
    filters: AttendanceFilters,
    now: Optional[datetime] = None,
) -> AttendanceListResponse:
    """Liste paginée depuis le cache si valide, sinon depuis l'API (puis mise en cache)."""
    now = now or datetime.now()
    student_key = filters.student_id or ALL_STUDENTS_KEY
    query_key = make_query_key(filters)

    cached = db.execute(
        select(CachedAttendanceList).where(
            CachedAttendanceList.student_id == student_key,
            CachedAttendanceList.query_key == query_key,
        )
    ).scalar_one_or_none()

    if cached is not None and cached.expires_at > now:
        logger.debug("Cache présences utilisé : %s [%s]", student_key, query_key)
        return AttendanceListResponse.model_validate_json(cached.payload)

    page = api.list_attendance(filters)
    payload = page.model_dump_json(by_alias=True)
    expires_at = now + timedelta(seconds=settings.ATTENDANCE_CACHE_TTL_SECONDS)

    if cached is None:
        db.add(CachedAttendanceList(
            student_id=student_key,
            query_key=query_key,
            payload=payload,
            fetched_at=now,
            expires_at=expires_at,
        ))
    else:
        cached.payload = payload
        cached.fetched_at = now
        cached.expires_at = expires_at
    try:
        db.commit()
    except IntegrityError:
        # Requête concurrente : la ligne vient d'être insérée par un autre appel
        db.rollback()
        logger.info("Cache présences déjà rempli en parallèle : %s [%s]", student_key, query_key)

    return page


def get_student_history(
    db: Session,
    api: AttendanceApiClient,
    filters: AttendanceFilters,
    now: Optional[datetime] = None,
) -> List[AttendanceRecord]:
    """Tous les enregistrements correspondant aux filtres (parcours des pages)."""
    records: List[AttendanceRecord] = []
    page_number = 1
    while page_number <= MAX_HISTORY_PAGES:
        page_filters = filters.model_copy(update={"page": page_number, "limit": filters.limit or 100})
        page = get_attendance_list(db, api, page_filters, now=now)
        records.extend(page.attendance)
        if page_number >= page.pagination.total_pages or not page.attendance:
            break
        page_number += 1
    return records


def invalidate_student(db: Session, student_id: str) -> int:
    """Supprime les listes en cache de l'élève et les listes globales. Retourne le nombre supprimé."""
    result = db.execute(
        delete(CachedAttendanceList).where(
            CachedAttendanceList.student_id.in_([student_id, ALL_STUDENTS_KEY])
        )
    )
    db.commit()
    deleted = result.rowcount or 0
    logger.info("Cache présences invalidé pour l'élève %s (%d entrées)", student_id, deleted)
    return deleted


def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Supprime les entrées expirées (tâche planifiée)."""
    now = now or datetime.now()
    result = db.execute(
        delete(CachedAttendanceList).where(CachedAttendanceList.expires_at <= now)
    )
    db.commit()
    return result.rowcount or 0
