"""
Service métier des sessions de capture : ouverture, position, envoi du pointage.

Fait le lien entre la session (état en mémoire), l'API externe et le cache local :
après un pointage réussi, les listes de l'élève sont invalidées et
l'enregistrement du jour est rechargé.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.schemas.capture import CaptureSessionCreate, LocationReport, SubmitRequest
from practicum_attendance.services import attendance_cache
from practicum_attendance.services.attendance_api import AttendanceApiClient, AttendanceApiError
from practicum_attendance.services.camera import build_frame_source
from practicum_attendance.services.capture_registry import CaptureSessionRegistry
from practicum_attendance.services.capture_session import CaptureSession
from practicum_attendance.services.face_detection import FaceDetector
from practicum_attendance.services.geolocation import reported_location, reverse_geocode

logger = logging.getLogger(__name__)


def open_session(
    api: AttendanceApiClient,
    registry: CaptureSessionRegistry,
    data: CaptureSessionCreate,
) -> CaptureSession:
    """
    Ouvre une session de capture pour l'élève (remplace la précédente).
    L'enregistrement du jour est chargé pour déterminer la prochaine action.
    Lève AttendanceApiError si l'API est injoignable.
    """
    today = api.get_today(data.student_id, data.practicum_id)
    session = CaptureSession(
        student_id=data.student_id,
        practicum_id=data.practicum_id,
        frame_source=build_frame_source(data.frame_source),
        detector=FaceDetector(),
        today=today,
    )
    registry.open(session)
    logger.info(
        "Session de capture %s ouverte (élève %s, stage %s, source %s)",
        session.id, data.student_id, data.practicum_id, data.frame_source,
    )
    return session


def report_location(session: CaptureSession, report: LocationReport) -> Optional[int]:
    """
    Enregistre la position remontée par la page.
    Retourne le numéro de requête à géocoder, ou None si la position est refusée.
    """
    return session.acquire_location(reported_location(report))


def geocode_location(session: CaptureSession, seq: int, latitude: float, longitude: float) -> None:
    """Tâche de fond : géocodage inverse best-effort, sans jamais bloquer le pointage."""
    address = reverse_geocode(latitude, longitude)
    session.apply_address(seq, address)


def submit_capture(
    db: Session,
    api: AttendanceApiClient,
    session: CaptureSession,
    request: SubmitRequest,
    user_agent: Optional[str] = None,
) -> Optional[AttendanceRecord]:
    """
    Envoie le pointage capturé.

    Succès : invalide le cache de l'élève et recharge l'enregistrement du jour.
    Échec  : AttendanceApiError remonte (message serveur, photo conservée dans la session).
    """
    record = session.submit(api, request, user_agent=user_agent)
    if record is None:
        return None

    attendance_cache.invalidate_student(db, session.student_id)
    try:
        session.replace_today(api.get_today(session.student_id, session.practicum_id))
    except AttendanceApiError as exc:
        # L'enregistrement renvoyé par le pointage reste affiché
        logger.warning("Rechargement du jour impossible après pointage : %s", exc.message)
    return record
