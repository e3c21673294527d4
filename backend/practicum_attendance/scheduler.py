"""
Planificateur APScheduler des tâches de maintenance.

- Fermeture des sessions de capture inactives (libère la caméra des pages abandonnées)
- Purge des listes de présences expirées dans le cache local
"""

import logging
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from practicum_attendance.config import settings
from practicum_attendance.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _reap_idle_capture_sessions() -> None:
    """Tâche planifiée : ferme les sessions sans activité depuis CAPTURE_SESSION_IDLE_MINUTES."""
    from practicum_attendance.services.capture_registry import registry

    registry.reap_idle(timedelta(minutes=settings.CAPTURE_SESSION_IDLE_MINUTES))


def _purge_attendance_cache() -> None:
    """
    Tâche planifiée : supprime les entrées expirées du cache.
    Import local pour éviter les imports circulaires.
    """
    from practicum_attendance.services.attendance_cache import purge_expired

    db = SessionLocal()
    try:
        deleted = purge_expired(db)
        if deleted:
            logger.info("Cache présences : %d entrée(s) expirée(s) supprimée(s)", deleted)
    except Exception as exc:
        logger.error("Erreur lors de la purge du cache des présences : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _reap_idle_capture_sessions,
        trigger="interval",
        minutes=1,
        id="capture_session_reaper",
        replace_existing=True,
    )
    scheduler.add_job(
        _purge_attendance_cache,
        trigger="interval",
        minutes=15,
        id="attendance_cache_purge",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler démarré : sessions inactives (1 min), purge du cache (15 min).")


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
