"""
Configuration centrale du service de pointage via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Cache local des listes de présences (SQLite par défaut)
    DATABASE_URL: str = "sqlite:///./practicum_attendance.db"
    ATTENDANCE_CACHE_TTL_SECONDS: int = 120

    # API externe de gestion des stages (source de vérité des présences)
    PRACTICUM_API_URL: str = "http://localhost:5000/api"
    PRACTICUM_API_TOKEN: str = ""
    PRACTICUM_API_TIMEOUT_SECONDS: float = 15.0

    # Géocodage inverse (compatible Nominatim)
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_USER_AGENT: str = "practicum-attendance/0.1"
    GEOCODER_TIMEOUT_SECONDS: float = 5.0

    # Caméra locale (mode borne), ignorée si le navigateur pousse les images
    CAMERA_INDEX: int = 0
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480

    # Détection de présence du visage (cascade Haar OpenCV)
    FACE_CASCADE_PATH: str = ""  # vide = cascade frontale livrée avec OpenCV
    FACE_SCALE_FACTOR: float = 1.1
    FACE_MIN_NEIGHBORS: int = 5
    FACE_MIN_SIZE: int = 80
    FACE_GUIDE_RADIUS_RATIO: float = 0.4  # rayon du cercle de cadrage / plus petit côté

    # Classification des remarques (minutes)
    LATE_GRACE_MINUTES: int = 0
    EARLY_ARRIVAL_MINUTES: int = 30
    OVERTIME_THRESHOLD_MINUTES: int = 30

    # Sessions de capture abandonnées
    CAPTURE_SESSION_IDLE_MINUTES: int = 10

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
