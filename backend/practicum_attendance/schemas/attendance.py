"""
Schémas Pydantic du contrat de l'API externe de présences.

Les réponses de l'API sont en camelCase dans une enveloppe {"data": ...}.
Tout écart de forme lève une ValidationError à la frontière (voir
attendance_api.AttendanceApiDecodeError) au lieu de propager des champs absents.

Note : on importe datetime en tant que module (dt) pour éviter le conflit de nommage
entre le champ `date` et le type `datetime.date` dans Pydantic v2.
"""

import datetime as dt
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from practicum_attendance.time_values import parse_time_value

Segment = Literal["morning", "afternoon", "overtime"]
Direction = Literal["in", "out"]
LocationType = Literal["Inside", "In-field", "Outside"]
DeviceType = Literal["Mobile", "Desktop", "Tablet"]
TimeInRemarks = Literal["Normal", "Late", "Early"]
TimeOutRemarks = Literal["Normal", "Early Departure", "Overtime"]
ApprovalStatus = Literal["Pending", "Approved", "Declined"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]

VALID_STATUS_FILTERS = {"present", "absent", "late", "excused", "all"}
VALID_APPROVAL_FILTERS = {"Pending", "Approved", "Declined", "all"}


class ApiModel(BaseModel):
    """Base des modèles échangés avec l'API : alias camelCase, noms Python acceptés."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DetailedLog(ApiModel):
    """Journal détaillé d'une session (photos propres à chaque segment)."""
    id: str
    session_type: Optional[Segment] = None
    photo_in: Optional[str] = None
    photo_out: Optional[str] = None


class AttendanceRecord(ApiModel):
    """Présence d'un élève pour une journée de stage."""
    id: str
    student_id: str
    practicum_id: str
    date: dt.date
    day: Optional[str] = None

    # Paire unique historique (anciens enregistrements), aussi reçue sous clockIn/clockOut
    time_in: Optional[str] = Field(default=None, validation_alias=AliasChoices("timeIn", "clockIn", "time_in"))
    time_out: Optional[str] = Field(default=None, validation_alias=AliasChoices("timeOut", "clockOut", "time_out"))

    morning_time_in: Optional[str] = None
    morning_time_out: Optional[str] = None
    afternoon_time_in: Optional[str] = None
    afternoon_time_out: Optional[str] = None
    overtime_time_in: Optional[str] = None
    overtime_time_out: Optional[str] = None

    hours: Optional[float] = None
    status: Optional[AttendanceStatus] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None

    # Horaires de l'organisme d'accueil (servent aux remarques)
    agency_name: Optional[str] = None
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    lunch_start_time: Optional[str] = None
    lunch_end_time: Optional[str] = None
    operating_days: Optional[str] = None

    time_in_location_type: Optional[LocationType] = None
    time_in_device_type: Optional[DeviceType] = None
    time_in_device_unit: Optional[str] = None
    time_in_mac_address: Optional[str] = None
    time_in_remarks: Optional[TimeInRemarks] = None
    time_in_exact_location: Optional[str] = None

    time_out_location_type: Optional[LocationType] = None
    time_out_device_type: Optional[DeviceType] = None
    time_out_device_unit: Optional[str] = None
    time_out_mac_address: Optional[str] = None
    time_out_remarks: Optional[TimeOutRemarks] = None
    time_out_exact_location: Optional[str] = None

    photo_in: Optional[str] = None
    photo_out: Optional[str] = None

    approval_status: Optional[ApprovalStatus] = None
    approved_by: Optional[str] = None
    approved_at: Optional[dt.datetime] = None
    approval_notes: Optional[str] = None

    detailed_logs: List[DetailedLog] = []

    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def date_from_iso(cls, v):
        # L'API renvoie parfois un datetime complet ("2024-01-15T00:00:00.000Z")
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @field_validator(
        "time_in", "time_out",
        "morning_time_in", "morning_time_out",
        "afternoon_time_in", "afternoon_time_out",
        "overtime_time_in", "overtime_time_out",
    )
    @classmethod
    def readable_time(cls, v):
        # Un horodatage illisible est refusé ici plutôt qu'au calcul des heures
        parse_time_value(v)
        return v

    def is_segmented(self) -> bool:
        return any((
            self.morning_time_in, self.morning_time_out,
            self.afternoon_time_in, self.afternoon_time_out,
            self.overtime_time_in, self.overtime_time_out,
        ))


class Pagination(ApiModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class AttendanceListResponse(ApiModel):
    """Page de résultats de GET /attendance."""
    attendance: List[AttendanceRecord]
    pagination: Pagination


class AttendanceFilters(BaseModel):
    """Filtres acceptés par GET /attendance ("all" = pas de filtre)."""
    page: Optional[int] = None
    limit: Optional[int] = None
    search: Optional[str] = None
    status: Optional[str] = None
    approval_status: Optional[str] = None
    student_id: Optional[str] = None
    practicum_id: Optional[str] = None
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_STATUS_FILTERS:
            raise ValueError(f"Statut invalide. Valeurs acceptées : {VALID_STATUS_FILTERS}")
        return v

    @field_validator("approval_status")
    @classmethod
    def valid_approval_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_APPROVAL_FILTERS:
            raise ValueError(f"Statut d'approbation invalide. Valeurs acceptées : {VALID_APPROVAL_FILTERS}")
        return v

    def to_query_params(self) -> dict:
        """Paramètres de requête camelCase, sans les filtres vides ni "all"."""
        params = {}
        for name, value in self.model_dump(exclude_none=True).items():
            if value == "all" or value == "":
                continue
            if isinstance(value, dt.date):
                value = value.isoformat()
            params[to_camel(name)] = str(value)
        return params


class ClockPayload(ApiModel):
    """Corps envoyé à POST /attendance/clock-in et /attendance/clock-out (hors photo)."""
    practicum_id: str
    date: Optional[dt.date] = None
    day: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    location_type: Optional[LocationType] = None
    device_type: Optional[DeviceType] = None
    device_unit: Optional[str] = None
    mac_address: Optional[str] = None
    remarks: Optional[str] = None
    session_type: Optional[Segment] = None

    def to_form_fields(self) -> dict:
        """Champs texte du formulaire multipart (valeurs nulles omises)."""
        fields = {}
        for key, value in self.model_dump(by_alias=True, exclude_none=True, mode="json").items():
            fields[key] = str(value)
        return fields
