"""
Client HTTP de l'API externe de présences (serveur Express hors de ce dépôt).

Endpoints consommés :
- POST /attendance/clock-in   (multipart si photo, JSON sinon)
- POST /attendance/clock-out
- GET  /attendance?filters    (liste paginée)
- GET  /attendance/{id}

Toutes les réponses sont validées par les schémas Pydantic : un écart de forme
lève AttendanceApiDecodeError plutôt que de laisser passer des champs absents.
"""

import base64
import logging
import re
from datetime import date
from typing import Optional

import httpx
from pydantic import ValidationError

from practicum_attendance.config import settings
from practicum_attendance.schemas.attendance import (
    AttendanceFilters,
    AttendanceListResponse,
    AttendanceRecord,
    ClockPayload,
)

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "list": "/attendance",
    "detail": "/attendance/{id}",
    "clock_in": "/attendance/clock-in",
    "clock_out": "/attendance/clock-out",
}

# "17:00:00", "17:00", "(17:00:00)" ...
_TIME_IN_MESSAGE_RE = re.compile(r"(\(?)(\d{1,2}):(\d{2})(?::(\d{2}))?(\)?)")


class AttendanceApiError(Exception):
    """Erreur renvoyée par l'API (ou absence de réponse). `message` est affichable tel quel."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AttendanceApiDecodeError(AttendanceApiError):
    """La réponse de l'API ne respecte pas le contrat attendu."""


def format_time_in_message(message: str) -> str:
    """Réécrit les heures d'un message serveur au format 12h ("17:00:00" → "05:00 PM")."""
    if not message:
        return message

    def _replace(match: re.Match) -> str:
        open_paren, hours, minutes, _seconds, close_paren = match.groups()
        hour_num, min_num = int(hours), int(minutes)
        if not (0 <= hour_num <= 23 and 0 <= min_num <= 59):
            return match.group(0)
        suffix = "AM" if hour_num < 12 else "PM"
        hour_12 = hour_num % 12 or 12
        return f"{open_paren}{hour_12:02d}:{min_num:02d} {suffix}{close_paren}"

    return _TIME_IN_MESSAGE_RE.sub(_replace, message)


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Décode une data URL ("data:image/png;base64,...") en (octets, type MIME)."""
    header, _, encoded = data_url.partition(",")
    if not encoded or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Image capturée invalide (data URL base64 attendue).")
    mime_type = header[len("data:"):].split(";")[0] or "image/png"
    return base64.b64decode(encoded), mime_type


class AttendanceApiClient:
    """Client synchrone (httpx) ; une instance partagée par processus."""

    def __init__(
        self,
        base_url: str = settings.PRACTICUM_API_URL,
        token: str = settings.PRACTICUM_API_TOKEN,
        timeout: float = settings.PRACTICUM_API_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Lecture
    # ------------------------------------------------------------------

    def list_attendance(self, filters: AttendanceFilters) -> AttendanceListResponse:
        """GET /attendance avec filtres ("all" et valeurs vides omis)."""
        data = self._request(
            "GET", ENDPOINTS["list"],
            default_message="Failed to fetch attendance",
            params=filters.to_query_params(),
        )
        return self._decode(AttendanceListResponse, data)

    def get_attendance(self, attendance_id: str) -> AttendanceRecord:
        data = self._request(
            "GET", ENDPOINTS["detail"].format(id=attendance_id),
            default_message="Failed to fetch attendance record",
        )
        return self._decode(AttendanceRecord, data)

    def get_today(self, student_id: str, practicum_id: Optional[str] = None,
                  today: Optional[date] = None) -> Optional[AttendanceRecord]:
        """Enregistrement du jour de l'élève, ou None s'il n'a pas encore pointé."""
        filters = AttendanceFilters(
            student_id=student_id,
            practicum_id=practicum_id,
            date=today or date.today(),
            limit=1,
        )
        page = self.list_attendance(filters)
        return page.attendance[0] if page.attendance else None

    # ------------------------------------------------------------------
    # Pointage
    # ------------------------------------------------------------------

    def clock_in(self, payload: ClockPayload, photo: Optional[bytes] = None,
                 photo_type: str = "image/png") -> AttendanceRecord:
        return self._clock(ENDPOINTS["clock_in"], payload, photo, photo_type, "Failed to clock in")

    def clock_out(self, payload: ClockPayload, photo: Optional[bytes] = None,
                  photo_type: str = "image/png") -> AttendanceRecord:
        return self._clock(ENDPOINTS["clock_out"], payload, photo, photo_type, "Failed to clock out")

    def _clock(self, path: str, payload: ClockPayload, photo: Optional[bytes],
               photo_type: str, default_message: str) -> AttendanceRecord:
        if photo:
            extension = photo_type.split("/")[-1] or "png"
            data = self._request(
                "POST", path,
                default_message=default_message,
                data=payload.to_form_fields(),
                files={"photo": (f"selfie.{extension}", photo, photo_type)},
            )
        else:
            data = self._request(
                "POST", path,
                default_message=default_message,
                json=payload.model_dump(by_alias=True, exclude_none=True, mode="json"),
            )
        record = self._decode(AttendanceRecord, data)
        logger.info(
            "Pointage %s accepté (élève %s, journée %s)",
            path.rsplit("/", 1)[-1], record.student_id, record.date,
        )
        return record

    # ------------------------------------------------------------------
    # Interne
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, default_message: str, **kwargs):
        """Exécute la requête et retourne le contenu de l'enveloppe {"data": ...}."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("API présences injoignable (%s %s) : %s", method, path, exc)
            raise AttendanceApiError("No response from server") from exc

        if response.is_error:
            message = default_message
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = str(body["message"])
            except ValueError:
                pass
            logger.info("API présences %s %s → %d : %s", method, path, response.status_code, message)
            raise AttendanceApiError(format_time_in_message(message), response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise AttendanceApiDecodeError(
                f"Réponse non JSON de l'API ({method} {path}).", response.status_code
            ) from exc
        if not isinstance(body, dict) or "data" not in body:
            raise AttendanceApiDecodeError(
                f"Enveloppe de réponse inattendue ({method} {path}).", response.status_code
            )
        return body["data"]

    @staticmethod
    def _decode(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.error("Réponse API non conforme au schéma %s : %s", model.__name__, exc)
            raise AttendanceApiDecodeError(
                f"Réponse de l'API non conforme ({model.__name__})."
            ) from exc


_client: Optional[AttendanceApiClient] = None


def get_attendance_api() -> AttendanceApiClient:
    """Dépendance FastAPI : client partagé, créé au premier appel."""
    global _client
    if _client is None:
        _client = AttendanceApiClient()
    return _client


def close_attendance_api() -> None:
    """Ferme le client partagé (appelé à l'arrêt de l'API)."""
    global _client
    if _client is not None:
        _client.close()
        _client = None
