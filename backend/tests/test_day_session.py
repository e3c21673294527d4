"""
Tests unitaires de la forme d'une journée et de la prochaine action autorisée.
"""

from itertools import product

from practicum_attendance.schemas.attendance import AttendanceRecord
from practicum_attendance.services.day_session import (
    SEGMENTS,
    LegacySession,
    NextAction,
    SegmentedSession,
    day_session_from_record,
    next_action,
)


def make_record(**kwargs) -> AttendanceRecord:
    return AttendanceRecord(id="att-1", student_id="stu-1", practicum_id="prac-1", date="2024-01-15", **kwargs)


def action_for(**kwargs):
    return next_action(day_session_from_record(make_record(**kwargs)))


class TestVariante:
    def test_sans_enregistrement_journee_segmentee_vierge(self):
        assert day_session_from_record(None) == SegmentedSession()

    def test_enregistrement_historique(self):
        session = day_session_from_record(make_record(clockIn="08:00:00"))
        assert isinstance(session, LegacySession)
        assert session.time_in == "08:00:00"

    def test_enregistrement_segmente(self):
        session = day_session_from_record(make_record(morning_time_in="08:00:00"))
        assert isinstance(session, SegmentedSession)
        assert session.morning.is_open


class TestJourneeSegmentee:
    def test_journee_vierge_entree_du_matin(self):
        assert next_action(day_session_from_record(None)) == NextAction("in", "morning")

    def test_matin_ouvert_sortie_du_matin(self):
        action = action_for(morning_time_in="08:00:00")
        assert action == NextAction("out", "morning")
        assert action.label == "Morning Out"

    def test_matin_clos_entree_apres_midi(self):
        action = action_for(morning_time_in="08:00:00", morning_time_out="12:00:00")
        assert action.label == "Afternoon In"

    def test_matin_saute_repropose_avant_apres_midi_clos(self):
        action = action_for(afternoon_time_in="13:00:00", afternoon_time_out="17:00:00")
        assert action == NextAction("in", "morning")

    def test_matin_saute_repropose_avant_apres_midi_ouvert(self):
        session = day_session_from_record(AttendanceRecord.model_validate({
            "id": "att-1", "studentId": "stu-1", "practicumId": "prac-1",
            "date": "2024-01-15", "afternoonTimeIn": "13:00",
        }))
        assert next_action(session) == NextAction("in", "morning")

    def test_sortie_sans_entree_repropose_l_entree(self):
        action = action_for(morning_time_out="12:00:00")
        assert action == NextAction("in", "morning")

    def test_heures_sup_ouvertes(self):
        action = action_for(
            morning_time_in="08:00:00", morning_time_out="12:00:00",
            afternoon_time_in="13:00:00", afternoon_time_out="17:00:00",
            overtime_time_in="17:30:00",
        )
        assert action.label == "Overtime Out"

    def test_journee_complete_aucune_action(self):
        assert action_for(
            morning_time_in="08:00:00", morning_time_out="12:00:00",
            afternoon_time_in="13:00:00", afternoon_time_out="17:00:00",
            overtime_time_in="17:30:00", overtime_time_out="19:00:00",
        ) is None

    def test_sortie_toujours_sur_un_segment_ouvert(self):
        """Toutes les combinaisons : une sortie vise un segment ouvert, une entrée un segment sans arrivée."""
        fields = [f"{s}_time_{d}" for s in SEGMENTS for d in ("in", "out")]
        for values in product([None, "10:00:00"], repeat=len(fields)):
            kwargs = dict(zip(fields, values))
            action = next_action(day_session_from_record(make_record(**kwargs)))
            if action is None:
                continue
            time_in = kwargs[f"{action.segment}_time_in"]
            time_out = kwargs[f"{action.segment}_time_out"]
            if action.direction == "out":
                assert time_in and not time_out
            else:
                assert not time_in


class TestJourneeHistorique:
    def test_arrivee_seule_sortie(self):
        action = action_for(clockIn="08:00:00")
        assert action == NextAction("out")
        assert action.label == "Out"

    def test_paire_complete_aucune_action(self):
        assert action_for(clockIn="08:00:00", clockOut="17:00:00") is None
