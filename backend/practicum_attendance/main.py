"""
Point d'entrée principal de l'API de pointage des stages.
Démarrage : uvicorn practicum_attendance.main:app --reload  (depuis backend/)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import practicum_attendance.models  # noqa: F401  enregistre les modèles dans Base.metadata avant create_all
from practicum_attendance.database import Base, engine
from practicum_attendance.routers import attendance, capture
from practicum_attendance.scheduler import start_scheduler, stop_scheduler
from practicum_attendance.services.attendance_api import close_attendance_api
from practicum_attendance.services.capture_registry import registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Cycle de vie : crée la table du cache, démarre le scheduler.
    À l'arrêt : libère toutes les caméras et ferme le client HTTP.
    """
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    stop_scheduler()
    registry.close_all()
    close_attendance_api()


app = FastAPI(
    title="Practicum Attendance API",
    description="Pointage des stagiaires : position, détection de visage, selfie et heures par segment",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost en développement (à restreindre en production).
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


app.include_router(capture.router)
app.include_router(attendance.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Toute exception non gérée devient une réponse 500 JSON qui passe par
    CORSMiddleware ; sinon la page reçoit un "Failed to fetch" sans détail.
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "Practicum Attendance API", "version": "0.1.0"}
