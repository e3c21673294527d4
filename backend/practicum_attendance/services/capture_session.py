"""
Session de capture d'un pointage : position → caméra → modèle → visage → selfie → envoi.

États : idle → locating → camera-starting → face-model-loading → awaiting-face
        → captured → submitting → done | error

Règles d'ordre :
- capture impossible tant que la caméra ET le modèle ne sont pas prêts et qu'aucun
  visage n'est dans le cercle de cadrage ;
- envoi impossible sans photo capturée ni position connue.

La session possède sa source d'images : cancel() et close() la libèrent toujours.
Un envoi en cours n'est pas interrompu côté serveur, mais son résultat est ignoré
si la session a été annulée entre-temps (jeton d'annulation).

Les endpoints FastAPI synchrones tournent dans un threadpool : chaque méthode
publique prend le verrou de la session, sauf pendant l'ouverture de la caméra
et l'appel réseau d'envoi. Le modèle de détection est chargé à la première image.
"""

import base64
import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import cv2
import numpy as np

from practicum_attendance.schemas.attendance import AttendanceRecord, ClockPayload
from practicum_attendance.schemas.capture import (
    CaptureSessionResponse,
    LocationState,
    NextActionResponse,
    SubmitRequest,
)
from practicum_attendance.services.attendance_api import (
    AttendanceApiClient,
    AttendanceApiError,
    decode_data_url,
)
from practicum_attendance.services.camera import CameraUnavailableError, FrameSource
from practicum_attendance.services.day_session import NextAction, day_session_from_record, next_action
from practicum_attendance.services.face_detection import FaceDetector
from practicum_attendance.services.geolocation import Location, LocationPermissionError, LocationProvider
from practicum_attendance.services.remarks import classify_device, classify_time_in, classify_time_out

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    LOCATING = "locating"
    CAMERA_STARTING = "camera-starting"
    FACE_MODEL_LOADING = "face-model-loading"
    AWAITING_FACE = "awaiting-face"
    CAPTURED = "captured"
    SUBMITTING = "submitting"
    DONE = "done"
    ERROR = "error"


# États depuis lesquels un nouveau pointage peut démarrer
READY_STATES = {CaptureState.IDLE, CaptureState.DONE, CaptureState.ERROR}
# États où la caméra tourne
CAMERA_STATES = {CaptureState.CAMERA_STARTING, CaptureState.FACE_MODEL_LOADING, CaptureState.AWAITING_FACE}
# États où les images de la page sont analysées
DETECTION_STATES = {CaptureState.FACE_MODEL_LOADING, CaptureState.AWAITING_FACE}

SUCCESS_MESSAGES = {"in": "Clock-in successful", "out": "Clock-out successful"}


class CaptureStateError(Exception):
    """Transition refusée dans l'état courant de la session (→ HTTP 409)."""


class CancellationToken:
    """Jeton lié à une tentative de pointage ; annulé par cancel() / close()."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CaptureSession:
    """Session de pointage d'un élève, possédée par une seule page ouverte."""

    def __init__(
        self,
        student_id: str,
        practicum_id: str,
        frame_source: FrameSource,
        detector: FaceDetector,
        today: Optional[AttendanceRecord] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.id = str(uuid.uuid4())
        self.student_id = student_id
        self.practicum_id = practicum_id
        self.frame_source = frame_source
        self.detector = detector
        self.today = today
        self._clock = clock

        self.state = CaptureState.IDLE
        self.location: Optional[Location] = None
        self.location_error: Optional[str] = None
        self.address_loading = False
        self.face_detected = False
        self.captured_image: Optional[str] = None
        self.last_error: Optional[str] = None
        self.message: Optional[str] = None
        self.last_activity = clock()

        self._lock = threading.RLock()
        self._token = CancellationToken()
        self._latest_frame: Optional[np.ndarray] = None
        self._pending_action: Optional[NextAction] = None
        self._location_seq = 0
        self._model_failed = False

    # ------------------------------------------------------------------
    # Propriétés dérivées
    # ------------------------------------------------------------------

    @property
    def model_loaded(self) -> bool:
        return self.detector.loaded

    @property
    def model_loading(self) -> bool:
        return self.state == CaptureState.FACE_MODEL_LOADING and not self._model_failed

    @property
    def can_capture(self) -> bool:
        return self.model_loaded and self.face_detected

    @property
    def capture_label(self) -> str:
        if not self.model_loaded:
            return "Loading..."
        if not self.face_detected:
            return "Align Face"
        return "Capture"

    @property
    def next_action(self) -> Optional[NextAction]:
        return next_action(day_session_from_record(self.today))

    @property
    def location_ready(self) -> bool:
        return self.location is not None and self.location_error is None

    def _clock_enabled(self, direction: str) -> bool:
        action = self.next_action
        return (
            self.location_ready
            and self.state in READY_STATES
            and action is not None
            and action.direction == direction
        )

    @property
    def clock_in_enabled(self) -> bool:
        return self._clock_enabled("in")

    @property
    def clock_out_enabled(self) -> bool:
        return self._clock_enabled("out")

    def _touch(self) -> None:
        self.last_activity = self._clock()

    # ------------------------------------------------------------------
    # Position
    # ------------------------------------------------------------------

    def acquire_location(self, provider: LocationProvider) -> Optional[int]:
        """
        Demande la position au fournisseur.
        Retourne le numéro de requête à passer à apply_address() pour le géocodage
        inverse, ou None si la position a été refusée.
        """
        with self._lock:
            self._touch()
            if self.state == CaptureState.SUBMITTING:
                raise CaptureStateError("Impossible de relocaliser pendant l'envoi du pointage.")

            previous = self.state
            if previous in READY_STATES:
                self.state = CaptureState.LOCATING
            try:
                location = provider()
            except LocationPermissionError as exc:
                self.location_error = exc.message
                self.address_loading = False
                if previous in READY_STATES:
                    self.state = CaptureState.ERROR
                logger.info("Session %s : position refusée (%s)", self.id, exc.code)
                return None

            self.location = location
            self.location_error = None
            self.address_loading = True
            self._location_seq += 1
            if previous in READY_STATES:
                self.state = CaptureState.IDLE
            logger.info(
                "Session %s : position %.5f, %.5f",
                self.id, location.latitude, location.longitude,
            )
            return self._location_seq

    def refresh_location(self, provider: LocationProvider) -> Optional[int]:
        """Action "Refresh" : relance l'acquisition (l'élève a bougé ou a autorisé la position)."""
        return self.acquire_location(provider)

    def apply_address(self, seq: int, address: Optional[str]) -> None:
        """Résultat du géocodage inverse ; ignoré s'il concerne une position périmée."""
        with self._lock:
            if seq != self._location_seq or self.location is None:
                return
            if address:
                self.location.address = address
            self.address_loading = False

    # ------------------------------------------------------------------
    # Caméra et détection
    # ------------------------------------------------------------------

    def start_camera(self) -> None:
        """Démarre la caméra pour la prochaine action (bouton In / Out)."""
        with self._lock:
            self._touch()
            if self.state not in READY_STATES:
                raise CaptureStateError(f"Impossible de démarrer la caméra en état {self.state.value}.")
            if not self.location_ready:
                raise CaptureStateError("La position est requise pour pointer. Activez la localisation.")
            action = self.next_action
            if action is None:
                raise CaptureStateError("Tous les pointages de la journée sont déjà enregistrés.")
            self._pending_action = action
            self.message = None
            token = self._begin_camera()
        self._open_camera(token)

    def _begin_camera(self) -> CancellationToken:
        self.last_error = None
        self.face_detected = False
        self._latest_frame = None
        self._model_failed = False
        self.state = CaptureState.CAMERA_STARTING
        return self._token

    def _open_camera(self, token: CancellationToken) -> None:
        # Ouverture hors verrou : l'état camera-starting reste lisible pendant un démarrage lent
        try:
            self.frame_source.open()
        except CameraUnavailableError as exc:
            with self._lock:
                if token.cancelled or self.state != CaptureState.CAMERA_STARTING:
                    return
                self.last_error = exc.message
                self.state = CaptureState.ERROR
            logger.info("Session %s : caméra indisponible", self.id)
            return

        with self._lock:
            if token.cancelled or self.state != CaptureState.CAMERA_STARTING:
                # Annulée pendant l'ouverture : la caméra ne doit pas rester allumée
                self.frame_source.release()
                return
            # Le modèle est chargé à la première image reçue
            self.state = CaptureState.FACE_MODEL_LOADING

    def _ensure_model(self) -> bool:
        if self.detector.loaded:
            self.state = CaptureState.AWAITING_FACE
            return True
        if self._model_failed:
            return False
        if self.detector.load():
            self.state = CaptureState.AWAITING_FACE
            return True
        # Capture bloquée ("Loading...") ; "Restart Camera" retente le chargement
        self._model_failed = True
        logger.warning("Session %s : modèle de détection non chargé", self.id)
        return False

    def process_frame(self, frame: Optional[np.ndarray] = None) -> bool:
        """
        Analyse une image : celle poussée par la page, sinon la caméra locale.
        La première image déclenche le chargement du modèle.
        Une erreur de détection sur une image est ignorée (image sans visage).
        """
        with self._lock:
            self._touch()
            if self.state not in DETECTION_STATES:
                raise CaptureStateError(f"Aucune détection en cours (état {self.state.value}).")
            if frame is not None:
                self.frame_source.push(frame)
            current = self.frame_source.read()
            if current is None:
                self.face_detected = False
                return False

            self._latest_frame = current
            if not self._ensure_model():
                self.face_detected = False
                return False
            try:
                self.face_detected = self.detector.face_in_guide(current)
            except cv2.error as exc:
                logger.debug("Session %s : détection ignorée sur une image (%s)", self.id, exc)
                self.face_detected = False
            return self.face_detected

    def restart_camera(self) -> None:
        """Libère puis réacquiert la caméra et le détecteur (détection bloquée)."""
        with self._lock:
            self._touch()
            if self.state not in CAMERA_STATES and self.state != CaptureState.ERROR:
                raise CaptureStateError(f"Impossible de redémarrer la caméra en état {self.state.value}.")
            if self.state == CaptureState.CAMERA_STARTING:
                raise CaptureStateError("Démarrage de la caméra déjà en cours.")
            if self._pending_action is None:
                raise CaptureStateError("Aucun pointage en cours.")
            self.frame_source.release()
            self.detector.unload()
            logger.info("Session %s : redémarrage de la caméra", self.id)
            token = self._begin_camera()
        self._open_camera(token)

    def capture(self) -> str:
        """Fige l'image courante (en miroir, comme l'aperçu) et passe en relecture."""
        with self._lock:
            self._touch()
            if self.state != CaptureState.AWAITING_FACE:
                raise CaptureStateError(f"Capture impossible en état {self.state.value}.")
            if not self.can_capture or self._latest_frame is None:
                raise CaptureStateError(f"Capture impossible : {self.capture_label}.")

            mirrored = cv2.flip(self._latest_frame, 1)
            ok, buffer = cv2.imencode(".png", mirrored)
            if not ok:
                raise CaptureStateError("Échec de l'encodage de l'image capturée.")
            self.captured_image = "data:image/png;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")

            self.frame_source.release()
            self._latest_frame = None
            self.face_detected = False
            self.state = CaptureState.CAPTURED
            return self.captured_image

    def retake(self) -> None:
        """Abandonne la photo et relance la caméra pour la même action."""
        with self._lock:
            self._touch()
            if self.state != CaptureState.CAPTURED:
                raise CaptureStateError(f"Aucune photo à reprendre (état {self.state.value}).")
            self.captured_image = None
            token = self._begin_camera()
        self._open_camera(token)

    # ------------------------------------------------------------------
    # Envoi
    # ------------------------------------------------------------------

    def _resolve_action(self, request: SubmitRequest) -> NextAction:
        action = self._pending_action or self.next_action
        if action is None:
            raise CaptureStateError("Tous les pointages de la journée sont déjà enregistrés.")
        if request.direction is not None and request.direction != action.direction:
            raise CaptureStateError(f"Action non autorisée : {action.label} attendu.")
        if request.segment is not None and request.segment != action.segment:
            raise CaptureStateError(f"Action non autorisée : {action.label} attendu.")
        return action

    def build_payload(self, action: NextAction, request: SubmitRequest,
                      user_agent: Optional[str], now: datetime) -> ClockPayload:
        """Corps du pointage : position, appareil, remarque calculée, segment."""
        device_type, device_unit = classify_device(user_agent)
        segment = action.segment or "morning"
        if action.direction == "in":
            remarks = classify_time_in(self.today, segment, now.time())
        else:
            remarks = classify_time_out(self.today, segment, now.time())

        return ClockPayload(
            practicum_id=self.practicum_id,
            date=now.date(),
            day=now.strftime("%A"),
            latitude=self.location.latitude,
            longitude=self.location.longitude,
            address=self.location.address,
            location_type=request.location_type,
            device_type=device_type,
            device_unit=device_unit,
            mac_address=request.mac_address,
            remarks=remarks,
            session_type=action.segment,
        )

    def submit(self, api: AttendanceApiClient, request: SubmitRequest,
               user_agent: Optional[str] = None) -> Optional[AttendanceRecord]:
        """
        Envoie le pointage à l'API externe.

        Succès → état done, message de confirmation, enregistrement du jour mis à jour.
        Échec  → message serveur tel quel dans last_error, photo conservée (état captured),
                 puis AttendanceApiError est relevée pour l'appelant.
        Retourne None si la session a été annulée pendant l'envoi.
        """
        with self._lock:
            self._touch()
            if self.state != CaptureState.CAPTURED or not self.captured_image:
                raise CaptureStateError("Prenez un selfie avant de valider le pointage.")
            if not self.location_ready:
                raise CaptureStateError("La position est requise pour pointer. Activez la localisation.")
            action = self._resolve_action(request)
            now = self._clock()
            payload = self.build_payload(action, request, user_agent, now)
            photo, photo_type = decode_data_url(self.captured_image)
            token = self._token
            self.last_error = None
            self.state = CaptureState.SUBMITTING

        # Appel réseau hors verrou : cancel() reste possible pendant l'envoi
        send = api.clock_in if action.direction == "in" else api.clock_out
        try:
            record = send(payload, photo=photo, photo_type=photo_type)
        except AttendanceApiError as exc:
            with self._lock:
                if token.cancelled:
                    logger.info("Session %s annulée : échec d'envoi ignoré (%s)", self.id, exc.message)
                    return None
                self.last_error = exc.message
                self.state = CaptureState.CAPTURED
            raise

        with self._lock:
            if token.cancelled:
                logger.info("Session %s annulée : confirmation de %s ignorée", self.id, action.label)
                return None
            self.today = record
            self.captured_image = None
            self._pending_action = None
            self.message = SUCCESS_MESSAGES[action.direction]
            self.state = CaptureState.DONE
            logger.info("Session %s : %s enregistré", self.id, action.label)
            return record

    def replace_today(self, record: Optional[AttendanceRecord]) -> None:
        """Met à jour l'enregistrement du jour après un rechargement depuis l'API."""
        with self._lock:
            if record is not None:
                self.today = record

    # ------------------------------------------------------------------
    # Annulation et fermeture
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Bouton "Cancel" : coupe la caméra, jette la capture, invalide l'envoi en cours."""
        with self._lock:
            self._touch()
            self._token.cancel()
            self._token = CancellationToken()
            self.frame_source.release()
            self._latest_frame = None
            self._pending_action = None
            self.captured_image = None
            self.face_detected = False
            self.last_error = None
            self.message = None
            self.state = CaptureState.ERROR if self.location_error else CaptureState.IDLE

    def close(self) -> None:
        """Fermeture définitive (navigation, remplacement, inactivité)."""
        with self._lock:
            self._token.cancel()
            self.frame_source.release()
            self.detector.unload()
            self._latest_frame = None
            self.captured_image = None
            self.face_detected = False
            self.state = CaptureState.IDLE

    # ------------------------------------------------------------------
    # Vue
    # ------------------------------------------------------------------

    def to_response(self) -> CaptureSessionResponse:
        with self._lock:
            action = self.next_action
            location = None
            if self.location is not None:
                location = LocationState(
                    latitude=self.location.latitude,
                    longitude=self.location.longitude,
                    address=self.location.address,
                )
            return CaptureSessionResponse(
                id=self.id,
                student_id=self.student_id,
                practicum_id=self.practicum_id,
                state=self.state.value,
                location=location,
                location_error=self.location_error,
                address_loading=self.address_loading,
                model_loading=self.model_loading,
                model_loaded=self.model_loaded,
                face_detected=self.face_detected,
                can_capture=self.can_capture,
                capture_label=self.capture_label,
                captured_image=self.captured_image,
                next_action=(
                    NextActionResponse(direction=action.direction, segment=action.segment, label=action.label)
                    if action is not None else None
                ),
                clock_in_enabled=self.clock_in_enabled,
                clock_out_enabled=self.clock_out_enabled,
                last_error=self.last_error,
                message=self.message,
                today=self.today,
                last_activity=self.last_activity,
            )
