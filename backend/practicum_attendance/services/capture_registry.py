"""
Registre en mémoire des sessions de capture actives.

Une seule session par élève : en ouvrir une nouvelle ferme (et libère la caméra de)
la précédente. Les sessions inactives sont fermées par le planificateur.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from practicum_attendance.services.capture_session import CaptureSession

logger = logging.getLogger(__name__)


class CaptureSessionRegistry:

    def __init__(self):
        self._sessions: Dict[str, CaptureSession] = {}
        self._by_student: Dict[str, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, session: CaptureSession) -> CaptureSession:
        """Enregistre la session ; ferme celle déjà ouverte pour le même élève."""
        with self._lock:
            previous_id = self._by_student.get(session.student_id)
            previous = self._sessions.pop(previous_id, None) if previous_id else None
            self._sessions[session.id] = session
            self._by_student[session.student_id] = session.id

        if previous is not None:
            previous.close()
            logger.info(
                "Session %s remplacée par %s (élève %s)",
                previous.id, session.id, session.student_id,
            )
        return session

    def get(self, session_id: str) -> CaptureSession:
        """Retourne la session ou lève ValueError si elle est introuvable."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session de capture {session_id} introuvable.")
        return session

    def close(self, session_id: str) -> bool:
        """Ferme et retire la session. Retourne False si elle n'existe pas."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None and self._by_student.get(session.student_id) == session_id:
                del self._by_student[session.student_id]
        if session is None:
            return False
        session.close()
        return True

    def reap_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> int:
        """Ferme les sessions sans activité depuis max_idle. Retourne leur nombre."""
        now = now or datetime.now()
        with self._lock:
            idle_ids = [
                sid for sid, s in self._sessions.items()
                if now - s.last_activity > max_idle
            ]
        closed = sum(1 for sid in idle_ids if self.close(sid))
        if closed:
            logger.info("%d session(s) de capture inactive(s) fermée(s)", closed)
        return closed

    def close_all(self) -> None:
        with self._lock:
            ids = list(self._sessions)
        for sid in ids:
            self.close(sid)


registry = CaptureSessionRegistry()


def get_registry() -> CaptureSessionRegistry:
    """Dépendance FastAPI : registre du processus."""
    return registry
