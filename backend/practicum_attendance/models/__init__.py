# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant l'appel à Base.metadata.create_all() au démarrage de l'API.

from practicum_attendance.models.attendance_cache import CachedAttendanceList  # noqa: F401
