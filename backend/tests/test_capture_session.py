"""
Tests unitaires de la session de capture (position → caméra → visage → selfie → envoi).
Détecteur factice et API mockée ; la source d'images est la vraie PushedFrameSource.
"""

import threading
from datetime import datetime
from unittest.mock import MagicMock

import numpy as np
import pytest

from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.schemas.capture import LocationReport, SubmitRequest
from practicum_attendance.services.attendance_api import AttendanceApiError
from practicum_attendance.services.camera import CAMERA_DENIED_MESSAGE, CameraUnavailableError, PushedFrameSource
from practicum_attendance.services.capture_session import CaptureSession, CaptureState, CaptureStateError
from practicum_attendance.services.face_detection import decode_frame
from practicum_attendance.services.geolocation import LOCATION_DENIED_MESSAGE, reported_location


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

class FakeDetector:
    """Détecteur sans OpenCV : le verdict est piloté par le test."""

    def __init__(self, loadable=True, face=True):
        self.loadable = loadable
        self.face = face
        self.load_calls = 0
        self.unload_calls = 0
        self._loaded = False

    @property
    def loaded(self):
        return self._loaded

    def load(self):
        self.load_calls += 1
        self._loaded = self.loadable
        return self._loaded

    def unload(self):
        self.unload_calls += 1
        self._loaded = False

    def face_in_guide(self, frame):
        return self.face


class BrokenCamera(PushedFrameSource):
    def open(self):
        raise CameraUnavailableError()


NOW = datetime(2024, 1, 15, 8, 10)


def make_record(**kwargs) -> AttendanceRecord:
    return AttendanceRecord(id="att-1", student_id="stu-1", practicum_id="prac-1", date="2024-01-15", **kwargs)


def make_session(today=None, detector=None, source=None) -> CaptureSession:
    return CaptureSession(
        student_id="stu-1",
        practicum_id="prac-1",
        frame_source=source or PushedFrameSource(),
        detector=detector or FakeDetector(),
        today=today,
        clock=lambda: NOW,
    )


def locate(session, **kwargs):
    report = LocationReport(**(kwargs or {"latitude": 50.8466, "longitude": 4.3528}))
    return session.acquire_location(reported_location(report))


def frame(width=64, height=48) -> np.ndarray:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, : width // 2] = 255  # moitié gauche blanche
    return image


def captured_session(**kwargs) -> CaptureSession:
    session = make_session(**kwargs)
    locate(session)
    session.start_camera()
    session.process_frame(frame())
    session.capture()
    return session


# ----------------------------------------------------------------
# Position
# ----------------------------------------------------------------

class TestLocation:
    def test_boutons_desactives_sans_position(self):
        session = make_session()
        assert session.state == CaptureState.IDLE
        assert session.clock_in_enabled is False
        assert session.clock_out_enabled is False

    def test_position_active_l_entree(self):
        session = make_session()
        seq = locate(session)
        assert seq == 1
        assert session.clock_in_enabled is True
        assert session.clock_out_enabled is False
        assert session.address_loading is True

    def test_adresse_appliquee(self):
        session = make_session()
        seq = locate(session)
        session.apply_address(seq, "Rue de la Loi 16, Bruxelles")
        assert session.location.address == "Rue de la Loi 16, Bruxelles"
        assert session.address_loading is False

    def test_adresse_perimee_ignoree(self):
        session = make_session()
        first = locate(session)
        locate(session, latitude=51.0, longitude=4.4)
        session.apply_address(first, "Ancienne adresse")
        assert session.location.address is None
        assert session.address_loading is True

    def test_geocodage_echoue_garde_les_coordonnees(self):
        session = make_session()
        seq = locate(session)
        session.apply_address(seq, None)
        assert session.location.latitude == 50.8466
        assert session.address_loading is False
        assert session.clock_in_enabled is True

    def test_refus_desactive_les_boutons_sans_appel_reseau(self):
        api = MagicMock()
        session = make_session()
        assert locate(session, error="PERMISSION_DENIED") is None

        assert session.location_error == LOCATION_DENIED_MESSAGE
        assert session.state == CaptureState.ERROR
        assert session.clock_in_enabled is False
        assert session.clock_out_enabled is False
        with pytest.raises(CaptureStateError):
            session.start_camera()
        with pytest.raises(CaptureStateError):
            session.submit(api, SubmitRequest())
        api.clock_in.assert_not_called()
        api.clock_out.assert_not_called()

    def test_refresh_apres_refus(self):
        session = make_session()
        locate(session, error="PERMISSION_DENIED")
        session.refresh_location(reported_location(LocationReport(latitude=50.0, longitude=4.0)))
        assert session.location_error is None
        assert session.state == CaptureState.IDLE
        assert session.clock_in_enabled is True


# ----------------------------------------------------------------
# Caméra et détection
# ----------------------------------------------------------------

class TestCamera:
    def test_demarrage_modele_charge_a_la_premiere_image(self):
        detector = FakeDetector()
        session = make_session(detector=detector)
        locate(session)
        session.start_camera()

        assert session.state == CaptureState.FACE_MODEL_LOADING
        assert session.frame_source.is_open
        assert session.model_loaded is False
        assert session.to_response().model_loading is True
        assert session.capture_label == "Loading..."
        assert session.clock_in_enabled is False

        session.process_frame(frame())
        assert detector.load_calls == 1
        assert session.state == CaptureState.AWAITING_FACE
        assert session.model_loaded is True
        assert session.to_response().model_loading is False

    def test_etat_demarrage_lisible_pendant_l_ouverture(self):
        seen = []

        class SlowCamera(PushedFrameSource):
            def open(self):
                reader = threading.Thread(target=lambda: seen.append(session.to_response().state))
                reader.start()
                reader.join(timeout=2)
                super().open()

        session = make_session(source=SlowCamera())
        locate(session)
        session.start_camera()

        assert seen == ["camera-starting"]
        assert session.state == CaptureState.FACE_MODEL_LOADING

    def test_annulation_pendant_l_ouverture_libere_la_camera(self):
        class CancelledCamera(PushedFrameSource):
            def open(self):
                super().open()
                session.cancel()

        session = make_session(source=CancelledCamera())
        locate(session)
        session.start_camera()

        assert session.state == CaptureState.IDLE
        assert session.frame_source.is_open is False

    def test_capture_conditionnee_au_visage(self):
        detector = FakeDetector(face=False)
        session = make_session(detector=detector)
        locate(session)
        session.start_camera()

        assert session.process_frame(frame()) is False
        assert session.can_capture is False
        assert session.capture_label == "Align Face"
        with pytest.raises(CaptureStateError):
            session.capture()

        detector.face = True
        assert session.process_frame(frame()) is True
        assert session.can_capture is True
        assert session.capture_label == "Capture"

    def test_modele_non_charge_bloque_la_capture(self):
        detector = FakeDetector(loadable=False, face=True)
        session = make_session(detector=detector)
        locate(session)
        session.start_camera()
        session.process_frame(frame())
        session.process_frame(frame())

        assert detector.load_calls == 1
        assert session.state == CaptureState.FACE_MODEL_LOADING
        assert session.to_response().model_loading is False
        assert session.capture_label == "Loading..."
        assert session.can_capture is False
        with pytest.raises(CaptureStateError):
            session.capture()

    def test_camera_refusee(self):
        session = make_session(source=BrokenCamera())
        locate(session)
        session.start_camera()
        assert session.state == CaptureState.ERROR
        assert session.last_error == CAMERA_DENIED_MESSAGE
        assert session.clock_in_enabled is True

    def test_redemarrage(self):
        detector = FakeDetector(loadable=False)
        session = make_session(detector=detector)
        locate(session)
        session.start_camera()
        session.process_frame(frame())
        assert session.model_loaded is False

        detector.loadable = True
        session.restart_camera()
        assert detector.unload_calls == 1
        assert session.state == CaptureState.FACE_MODEL_LOADING
        session.process_frame(frame())
        assert detector.load_calls == 2
        assert session.model_loaded is True
        assert session.state == CaptureState.AWAITING_FACE

    def test_image_hors_detection_refusee(self):
        session = make_session()
        with pytest.raises(CaptureStateError):
            session.process_frame(frame())

    def test_capture_en_miroir_et_camera_liberee(self):
        session = captured_session()

        assert session.state == CaptureState.CAPTURED
        assert session.captured_image.startswith("data:image/png;base64,")
        assert session.frame_source.is_open is False
        image = decode_frame(session.captured_image)
        assert image[:, 0].max() == 0      # la moitié blanche est passée à droite
        assert image[:, -1].min() == 255

    def test_reprise(self):
        session = captured_session()
        session.retake()
        assert session.captured_image is None
        assert session.state == CaptureState.FACE_MODEL_LOADING
        assert session.frame_source.is_open
        session.process_frame(frame())
        assert session.state == CaptureState.AWAITING_FACE

    def test_journee_complete_pas_de_camera(self):
        today = make_record(clockIn="08:00:00", clockOut="17:00:00")
        session = make_session(today=today)
        locate(session)
        assert session.clock_in_enabled is False
        with pytest.raises(CaptureStateError, match="déjà enregistrés"):
            session.start_camera()


# ----------------------------------------------------------------
# Envoi
# ----------------------------------------------------------------

class TestSubmit:
    def test_entree_du_matin(self):
        api = MagicMock()
        api.clock_in.return_value = make_record(morning_time_in="08:10:00")
        session = captured_session()

        record = session.submit(api, SubmitRequest(), user_agent="Mozilla/5.0 (iPhone) Mobile Safari/604.1")

        assert record.morning_time_in == "08:10:00"
        assert session.state == CaptureState.DONE
        assert session.message == "Clock-in successful"
        assert session.captured_image is None
        assert session.next_action.label == "Morning Out"
        assert session.clock_out_enabled is True

        payload = api.clock_in.call_args.args[0]
        assert payload.session_type == "morning"
        assert payload.latitude == 50.8466
        assert payload.device_type == "Mobile"
        assert payload.remarks == "Normal"
        assert payload.day == "Monday"
        assert api.clock_in.call_args.kwargs["photo"].startswith(b"\x89PNG")
        assert api.clock_in.call_args.kwargs["photo_type"] == "image/png"

    def test_remarque_retard_selon_horaire(self):
        api = MagicMock()
        today = make_record(opening_time="08:00:00", morning_time_in=None)
        api.clock_in.return_value = make_record(morning_time_in="08:10:00")
        session = captured_session(today=today)

        session.submit(api, SubmitRequest())

        assert api.clock_in.call_args.args[0].remarks == "Late"

    def test_sortie_appelle_clock_out(self):
        api = MagicMock()
        api.clock_out.return_value = make_record(morning_time_in="08:00:00", morning_time_out="12:00:00")
        session = captured_session(today=make_record(morning_time_in="08:00:00"))

        session.submit(api, SubmitRequest(segment="morning", direction="out"))

        api.clock_in.assert_not_called()
        assert session.message == "Clock-out successful"
        assert session.next_action.label == "Afternoon In"

    def test_echec_conserve_la_photo(self):
        api = MagicMock()
        api.clock_in.side_effect = AttendanceApiError("Morning session already clocked in", 400)
        session = captured_session()
        photo = session.captured_image

        with pytest.raises(AttendanceApiError):
            session.submit(api, SubmitRequest())

        assert session.state == CaptureState.CAPTURED
        assert session.captured_image == photo
        assert session.last_error == "Morning session already clocked in"

        api.clock_in.side_effect = None
        api.clock_in.return_value = make_record(morning_time_in="08:10:00")
        session.submit(api, SubmitRequest())
        assert session.state == CaptureState.DONE
        assert session.last_error is None

    def test_action_non_autorisee(self):
        session = captured_session()
        with pytest.raises(CaptureStateError, match="Morning In"):
            session.submit(MagicMock(), SubmitRequest(direction="out"))

    def test_envoi_sans_photo_refuse(self):
        session = make_session()
        locate(session)
        with pytest.raises(CaptureStateError, match="selfie"):
            session.submit(MagicMock(), SubmitRequest())

    def test_annulation_pendant_l_envoi_ignore_la_reponse(self):
        session = captured_session()
        api = MagicMock()

        def late_success(payload, photo=None, photo_type=None):
            session.cancel()
            return make_record(morning_time_in="08:10:00")

        api.clock_in.side_effect = late_success

        assert session.submit(api, SubmitRequest()) is None
        assert session.state == CaptureState.IDLE
        assert session.today is None
        assert session.message is None


# ----------------------------------------------------------------
# Annulation et fermeture
# ----------------------------------------------------------------

class TestCancelClose:
    def test_annulation_libere_la_camera(self):
        session = make_session()
        locate(session)
        session.start_camera()
        session.cancel()
        assert session.frame_source.is_open is False
        assert session.state == CaptureState.IDLE
        assert session.clock_in_enabled is True

    def test_fermeture(self):
        detector = FakeDetector()
        session = make_session(detector=detector)
        locate(session)
        session.start_camera()
        session.close()
        assert session.frame_source.is_open is False
        assert detector.loaded is False

    def test_vue_complete(self):
        session = make_session()
        locate(session)
        response = session.to_response()
        assert response.state == "idle"
        assert response.next_action.label == "Morning In"
        assert response.location.latitude == 50.8466
        assert response.clock_in_enabled is True
