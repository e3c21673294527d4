"""
Détection de présence d'un visage dans le cercle de cadrage.

Présence uniquement : aucune reconnaissance d'identité, aucune détection de vivacité.
Le modèle (cascade Haar frontale d'OpenCV) est chargé une fois par détecteur ;
tant qu'il n'est pas chargé, la capture reste désactivée ("Loading...").
"""

import base64
import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from practicum_attendance.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"


@dataclass(frozen=True)
class FaceBox:
    x: int
    y: int
    width: int
    height: int


def is_inside_guide(box: FaceBox, frame_width: int, frame_height: int,
                    radius_ratio: float = settings.FACE_GUIDE_RADIUS_RATIO) -> bool:
    """
    Vrai si le visage tient entièrement dans le cercle de cadrage centré :
    distance(centre visage, centre cercle) + demi-diagonale du visage <= rayon.
    """
    guide_x, guide_y = frame_width / 2, frame_height / 2
    radius = min(frame_width, frame_height) * radius_ratio

    face_x = box.x + box.width / 2
    face_y = box.y + box.height / 2
    half_diagonal = math.hypot(box.width / 2, box.height / 2)
    center_distance = math.hypot(face_x - guide_x, face_y - guide_y)

    return center_distance + half_diagonal <= radius


def decode_frame(image: str) -> np.ndarray:
    """Décode une image base64 (data URL acceptée) en tableau BGR OpenCV."""
    encoded = image.split(",", 1)[1] if image.startswith("data:") else image
    try:
        raw = base64.b64decode(encoded, validate=True)
    except ValueError:
        raise ValueError("Image invalide : base64 attendu.")
    frame = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Image invalide : format non reconnu.")
    return frame


class FaceDetector:
    """Détecteur de visage unique (le plus grand) avec état de chargement du modèle."""

    def __init__(
        self,
        cascade_path: str = settings.FACE_CASCADE_PATH,
        scale_factor: float = settings.FACE_SCALE_FACTOR,
        min_neighbors: int = settings.FACE_MIN_NEIGHBORS,
        min_size: int = settings.FACE_MIN_SIZE,
        guide_ratio: float = settings.FACE_GUIDE_RADIUS_RATIO,
    ):
        self.cascade_path = cascade_path or os.path.join(cv2.data.haarcascades, DEFAULT_CASCADE)
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self.guide_ratio = guide_ratio
        self._classifier: Optional[cv2.CascadeClassifier] = None

    @property
    def loaded(self) -> bool:
        return self._classifier is not None

    def load(self) -> bool:
        """Charge la cascade. Retourne False (sans lever) si le fichier est absent ou invalide."""
        if self.loaded:
            return True
        classifier = cv2.CascadeClassifier(self.cascade_path)
        if classifier.empty():
            logger.error("Modèle de détection introuvable ou invalide : %s", self.cascade_path)
            return False
        self._classifier = classifier
        logger.info("Modèle de détection de visage chargé (%s)", self.cascade_path)
        return True

    def unload(self) -> None:
        self._classifier = None

    def detect_single_face(self, frame: np.ndarray) -> Optional[FaceBox]:
        """Plus grand visage détecté dans l'image, ou None."""
        if self._classifier is None:
            return None
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        gray = cv2.equalizeHist(gray)
        faces = self._classifier.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_size, self.min_size),
        )
        if len(faces) == 0:
            return None
        x, y, w, h = max(faces, key=lambda f: f[2] * f[3])
        return FaceBox(int(x), int(y), int(w), int(h))

    def face_in_guide(self, frame: np.ndarray) -> bool:
        """Vrai si un visage est détecté et entièrement contenu dans le cercle de cadrage."""
        box = self.detect_single_face(frame)
        if box is None:
            return False
        height, width = frame.shape[:2]
        return is_inside_guide(box, width, height, self.guide_ratio)
