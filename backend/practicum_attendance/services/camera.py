"""
Sources d'images pour la capture du selfie.

- PushedFrameSource : la page envoie les images de sa vidéo (getUserMedia côté navigateur)
- DeviceCamera      : caméra locale lue avec OpenCV (mode borne)

Une source appartient à une seule session de capture ; release() libère le
périphérique et doit toujours précéder une nouvelle acquisition.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from practicum_attendance.config import settings

logger = logging.getLogger(__name__)

CAMERA_DENIED_MESSAGE = "Camera access denied. Please allow camera access to clock in."


class CameraUnavailableError(Exception):
    """Caméra refusée ou indisponible, récupérable (nouvel essai de l'utilisateur)."""

    def __init__(self, message: str = CAMERA_DENIED_MESSAGE):
        self.message = message
        super().__init__(message)


class FrameSource(ABC):
    """Interface commune : open → read* → release."""

    kind = "abstract"

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        ...

    @abstractmethod
    def release(self) -> None:
        ...

    def push(self, frame: np.ndarray) -> None:
        raise CameraUnavailableError("Cette source ne reçoit pas d'images de la page.")


class PushedFrameSource(FrameSource):
    """Dernière image envoyée par le navigateur ; aucune image tant que la source est fermée."""

    kind = "browser"

    def __init__(self):
        self._open = False
        self._latest: Optional[np.ndarray] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True
        self._latest = None

    def push(self, frame: np.ndarray) -> None:
        if not self._open:
            raise CameraUnavailableError("La caméra n'est pas démarrée.")
        self._latest = frame

    def read(self) -> Optional[np.ndarray]:
        return self._latest if self._open else None

    def release(self) -> None:
        self._open = False
        self._latest = None


class DeviceCamera(FrameSource):
    """Caméra locale OpenCV (index configurable)."""

    kind = "device"

    def __init__(self, index: int = settings.CAMERA_INDEX,
                 width: int = settings.CAMERA_WIDTH, height: int = settings.CAMERA_HEIGHT):
        self.index = index
        self.width = width
        self.height = height
        self._capture: Optional[cv2.VideoCapture] = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    def open(self) -> None:
        if self.is_open:
            return
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            logger.warning("Caméra %s indisponible", self.index)
            raise CameraUnavailableError()
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture
        logger.info("Caméra %s ouverte", self.index)

    def read(self) -> Optional[np.ndarray]:
        if not self.is_open:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info("Caméra %s libérée", self.index)


def build_frame_source(kind: str) -> FrameSource:
    """Fabrique la source correspondant au mode choisi à l'ouverture de session."""
    if kind == "device":
        return DeviceCamera()
    return PushedFrameSource()
