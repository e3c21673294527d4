"""
Configuration partagée pour tous les tests.
Override get_db (aucune vraie base) et le client de l'API externe (aucun appel réseau).
"""

import os

# Base en mémoire pour le create_all du lifespan ; à définir avant l'import des settings
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from practicum_attendance.database import get_db
from practicum_attendance.main import app
from practicum_attendance.services.attendance_api import get_attendance_api


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.execute.return_value.rowcount = 0
    return db


@pytest.fixture
def mock_api():
    """Client de l'API externe mocké (get_today, clock_in, clock_out, ...)."""
    api = MagicMock()
    api.get_today.return_value = None
    return api


@pytest.fixture
def client(mock_db, mock_api):
    """Client HTTP de test avec la BDD et l'API externe mockées."""
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_attendance_api] = lambda: mock_api
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
