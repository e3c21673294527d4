"""
Schémas Pydantic des sessions de capture (pointage avec selfie).

Une session de capture n'est jamais persistée : elle vit en mémoire le temps
d'un pointage, pour une seule page ouverte par l'élève.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

from practicum_attendance.schemas.attendance import AttendanceRecord, Direction, LocationType, Segment

LocationErrorCode = Literal["PERMISSION_DENIED", "TIMEOUT", "UNSUPPORTED", "POSITION_UNAVAILABLE"]
FrameSourceKind = Literal["browser", "device"]


class CaptureSessionCreate(BaseModel):
    """Ouverture d'une session de capture pour un élève."""
    student_id: str
    practicum_id: str
    frame_source: FrameSourceKind = "browser"  # browser = images poussées par la page, device = caméra locale

    @field_validator("student_id", "practicum_id")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("L'identifiant ne peut pas être vide.")
        return v.strip()


class LocationReport(BaseModel):
    """Résultat de navigator.geolocation côté navigateur : coordonnées OU code d'erreur."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[LocationErrorCode] = None

    @model_validator(mode="after")
    def coordinates_or_error(self):
        if self.error is None:
            if self.latitude is None or self.longitude is None:
                raise ValueError("Coordonnées manquantes (latitude et longitude requises sans erreur).")
            if not -90 <= self.latitude <= 90 or not -180 <= self.longitude <= 180:
                raise ValueError("Coordonnées hors limites.")
        return self


class FrameUpload(BaseModel):
    """
    Image de la vidéo en cours (data URL ou base64 brut, JPEG ou PNG).
    Sans image, la session lit sa caméra locale (mode borne).
    """
    image: Optional[str] = None

    @field_validator("image")
    @classmethod
    def image_not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Image vide.")
        return v.strip() if v is not None else None


class FrameResult(BaseModel):
    """Verdict de détection pour une image."""
    face_detected: bool
    can_capture: bool
    capture_label: str


class SubmitRequest(BaseModel):
    """
    Validation du pointage après capture.
    segment/direction facultatifs : par défaut, la prochaine action calculée.
    """
    segment: Optional[Segment] = None
    direction: Optional[Direction] = None
    location_type: LocationType = "Inside"
    mac_address: Optional[str] = None


class LocationState(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


class NextActionResponse(BaseModel):
    direction: Direction
    segment: Optional[Segment]
    label: str


class CaptureSessionResponse(BaseModel):
    """État complet d'une session de capture, tel qu'affiché par la page."""
    id: str
    student_id: str
    practicum_id: str
    state: str
    location: Optional[LocationState]
    location_error: Optional[str]
    address_loading: bool
    model_loading: bool
    model_loaded: bool
    face_detected: bool
    can_capture: bool
    capture_label: str
    captured_image: Optional[str]
    next_action: Optional[NextActionResponse]
    clock_in_enabled: bool
    clock_out_enabled: bool
    last_error: Optional[str]
    message: Optional[str]
    today: Optional[AttendanceRecord]
    last_activity: datetime
