"""
Router des sessions de capture (pointage avec position et selfie).

Cycle d'une page de pointage :
  POST   /api/v1/capture-sessions                     ouvrir la session
  POST   /api/v1/capture-sessions/{id}/location       position (ou erreur) du navigateur
  POST   /api/v1/capture-sessions/{id}/camera/start   bouton In / Out
  POST   /api/v1/capture-sessions/{id}/frames         image de la vidéo → visage détecté ?
  POST   /api/v1/capture-sessions/{id}/capture        figer le selfie
  POST   /api/v1/capture-sessions/{id}/submit         envoyer le pointage
  DELETE /api/v1/capture-sessions/{id}                quitter la page
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from practicum_attendance.database import get_db
from practicum_attendance.schemas.capture import (
    CaptureSessionCreate,
    CaptureSessionResponse,
    FrameResult,
    FrameUpload,
    LocationReport,
    SubmitRequest,
)
from practicum_attendance.services import capture_service
from practicum_attendance.services.attendance_api import (
    AttendanceApiClient,
    AttendanceApiError,
    get_attendance_api,
)
from practicum_attendance.services.camera import CameraUnavailableError
from practicum_attendance.services.capture_registry import CaptureSessionRegistry, get_registry
from practicum_attendance.services.capture_session import CaptureSession, CaptureStateError
from practicum_attendance.services.face_detection import decode_frame

router = APIRouter(prefix="/api/v1/capture-sessions", tags=["Pointage"])


def api_error_to_http(exc: AttendanceApiError) -> HTTPException:
    """Erreur de l'API externe : statut 4xx relayé, sinon 502. Message serveur tel quel."""
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return HTTPException(status_code=exc.status_code, detail=exc.message)
    return HTTPException(status_code=502, detail=exc.message)


def _get_session(session_id: str, registry: CaptureSessionRegistry) -> CaptureSession:
    try:
        return registry.get(session_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("", response_model=CaptureSessionResponse, status_code=201,
             summary="Ouvrir une session de capture")
def open_session(
    data: CaptureSessionCreate,
    api: AttendanceApiClient = Depends(get_attendance_api),
    registry: CaptureSessionRegistry = Depends(get_registry),
):
    """
    Ouvre la session de pointage de l'élève et charge son enregistrement du jour.
    Une session déjà ouverte pour le même élève est fermée (caméra libérée).
    """
    try:
        session = capture_service.open_session(api, registry, data)
    except AttendanceApiError as e:
        raise api_error_to_http(e)
    return session.to_response()


@router.get("/{session_id}", response_model=CaptureSessionResponse, summary="État d'une session")
def get_session(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """Retourne l'état courant (position, caméra, détection, prochaine action, messages)."""
    return _get_session(session_id, registry).to_response()


@router.post("/{session_id}/location", response_model=CaptureSessionResponse,
             summary="Transmettre la position du navigateur")
def report_location(
    session_id: str,
    report: LocationReport,
    background_tasks: BackgroundTasks,
    registry: CaptureSessionRegistry = Depends(get_registry),
):
    """
    Enregistre la position (ou l'erreur de géolocalisation) remontée par la page.
    Sert aussi au bouton "Refresh". En cas de refus, les boutons In / Out restent
    désactivés et location_error contient le message à afficher.
    L'adresse est résolue en tâche de fond (address_loading = true en attendant).
    """
    session = _get_session(session_id, registry)
    try:
        seq = capture_service.report_location(session, report)
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if seq is not None:
        background_tasks.add_task(
            capture_service.geocode_location, session, seq, report.latitude, report.longitude
        )
    return session.to_response()


@router.post("/{session_id}/camera/start", response_model=CaptureSessionResponse,
             summary="Démarrer la caméra (bouton In / Out)")
def start_camera(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """
    Démarre la caméra et le modèle de détection pour la prochaine action autorisée.
    Refusé (409) sans position valide ou si la journée est complète.
    """
    session = _get_session(session_id, registry)
    try:
        session.start_camera()
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_response()


@router.post("/{session_id}/camera/restart", response_model=CaptureSessionResponse,
             summary="Redémarrer la caméra")
def restart_camera(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """Libère puis réacquiert la caméra et le détecteur quand la détection semble bloquée."""
    session = _get_session(session_id, registry)
    try:
        session.restart_camera()
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_response()


@router.post("/{session_id}/frames", response_model=FrameResult, summary="Analyser une image")
def process_frame(
    session_id: str,
    data: Optional[FrameUpload] = None,
    registry: CaptureSessionRegistry = Depends(get_registry),
):
    """
    Détecte un visage dans le cercle de cadrage.
    Corps vide : lecture de la caméra locale (mode borne).
    """
    session = _get_session(session_id, registry)
    try:
        frame = decode_frame(data.image) if data is not None and data.image else None
        face_detected = session.process_frame(frame)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CameraUnavailableError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return FrameResult(
        face_detected=face_detected,
        can_capture=session.can_capture,
        capture_label=session.capture_label,
    )


@router.post("/{session_id}/capture", response_model=CaptureSessionResponse, summary="Prendre le selfie")
def capture(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """Fige l'image (en miroir) ; autorisé seulement si modèle chargé et visage détecté."""
    session = _get_session(session_id, registry)
    try:
        session.capture()
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_response()


@router.post("/{session_id}/retake", response_model=CaptureSessionResponse, summary="Reprendre le selfie")
def retake(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    session = _get_session(session_id, registry)
    try:
        session.retake()
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_response()


@router.post("/{session_id}/submit", response_model=CaptureSessionResponse, summary="Valider le pointage")
def submit(
    session_id: str,
    request: Optional[SubmitRequest] = None,
    user_agent: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    api: AttendanceApiClient = Depends(get_attendance_api),
    registry: CaptureSessionRegistry = Depends(get_registry),
):
    """
    Envoie le pointage (position, appareil, remarque, photo) à l'API externe.

    En cas de refus du serveur (segment déjà pointé, horaire...), le message est
    relayé tel quel et la photo reste disponible : renvoyer /submit suffit.
    """
    session = _get_session(session_id, registry)
    try:
        capture_service.submit_capture(db, api, session, request or SubmitRequest(), user_agent)
    except CaptureStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AttendanceApiError as e:
        raise api_error_to_http(e)
    return session.to_response()


@router.post("/{session_id}/cancel", response_model=CaptureSessionResponse, summary="Annuler le pointage")
def cancel(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """Coupe la caméra et abandonne la capture ; un envoi en cours ne sera pas confirmé."""
    session = _get_session(session_id, registry)
    session.cancel()
    return session.to_response()


@router.delete("/{session_id}", status_code=204, summary="Fermer une session")
def close_session(session_id: str, registry: CaptureSessionRegistry = Depends(get_registry)):
    """Fermeture à la navigation : libère la caméra et oublie la session."""
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail=f"Session de capture {session_id} introuvable.")
