"""
Modèle SQLAlchemy du cache local des présences.

Les enregistrements appartiennent à l'API externe : on ne stocke ici que les
réponses JSON brutes des listes déjà consultées, indexées par élève et par clé
de requête. Une entrée est invalidée après chaque pointage réussi de l'élève.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, func

from practicum_attendance.database import Base


class CachedAttendanceList(Base):
    """Réponse paginée de GET /attendance mise en cache pour un élève."""
    __tablename__ = "attendance_cache"
    __table_args__ = (UniqueConstraint("student_id", "query_key", name="uq_attendance_cache_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False, index=True)
    query_key = Column(String(500), nullable=False)   # Filtres normalisés (tri alphabétique)
    payload = Column(Text, nullable=False)            # JSON de AttendanceListResponse
    fetched_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
