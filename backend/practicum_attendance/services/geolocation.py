"""
Acquisition de la position et géocodage inverse.

La position est obtenue par le navigateur (API Geolocation) puis transmise au
service sous forme de LocationReport : soit des coordonnées, soit un code
d'erreur (permission refusée, délai dépassé, non supporté). Une erreur n'est
jamais réessayée automatiquement ; l'utilisateur relance via "Refresh".

Le géocodage inverse est best-effort : en cas d'échec on garde les coordonnées.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from practicum_attendance.config import settings
from practicum_attendance.schemas.capture import LocationReport

logger = logging.getLogger(__name__)

LOCATION_DENIED_MESSAGE = "Location access denied. Please enable location services."
LOCATION_UNSUPPORTED_MESSAGE = "Geolocation is not supported by this browser."
LOCATION_TIMEOUT_MESSAGE = "Location request timed out. Please try again."
LOCATION_UNAVAILABLE_MESSAGE = "Location unavailable. Please try again."

_ERROR_MESSAGES = {
    "PERMISSION_DENIED": LOCATION_DENIED_MESSAGE,
    "UNSUPPORTED": LOCATION_UNSUPPORTED_MESSAGE,
    "TIMEOUT": LOCATION_TIMEOUT_MESSAGE,
    "POSITION_UNAVAILABLE": LOCATION_UNAVAILABLE_MESSAGE,
}


class LocationPermissionError(Exception):
    """Position indisponible (refus, délai, non supporté), récupérable par l'utilisateur."""

    def __init__(self, code: str):
        self.code = code
        self.message = _ERROR_MESSAGES.get(code, LOCATION_UNAVAILABLE_MESSAGE)
        super().__init__(self.message)


@dataclass
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = None


# Fournisseur de position : retourne une Location ou lève LocationPermissionError
LocationProvider = Callable[[], Location]


def reported_location(report: LocationReport) -> LocationProvider:
    """Fournisseur basé sur la position (ou l'erreur) remontée par le navigateur."""

    def _provider() -> Location:
        if report.error is not None:
            raise LocationPermissionError(report.error)
        return Location(latitude=report.latitude, longitude=report.longitude)

    return _provider


def reverse_geocode(
    latitude: float,
    longitude: float,
    transport: Optional[httpx.BaseTransport] = None,
) -> Optional[str]:
    """
    Adresse lisible (display_name Nominatim) pour des coordonnées.
    Retourne None en cas d'échec : l'erreur est seulement journalisée.
    """
    params = {
        "format": "json",
        "lat": latitude,
        "lon": longitude,
        "zoom": 18,
        "addressdetails": 1,
    }
    try:
        with httpx.Client(
            timeout=settings.GEOCODER_TIMEOUT_SECONDS,
            headers={"User-Agent": settings.GEOCODER_USER_AGENT},
            transport=transport,
        ) as client:
            response = client.get(settings.GEOCODER_URL, params=params)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Géocodage inverse impossible (%s, %s) : %s", latitude, longitude, exc)
        return None

    if isinstance(data, dict):
        return data.get("display_name") or None
    return None
