"""
Forme d'une journée de pointage et choix de la prochaine action autorisée.

Une journée est soit historique (une seule paire arrivée/départ), soit segmentée
(matin, après-midi, heures sup.). next_action() est définie pour les deux variantes.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from practicum_attendance.schemas.attendance import AttendanceRecord, Direction, Segment

SEGMENTS = ("morning", "afternoon", "overtime")

SEGMENT_LABELS = {"morning": "Morning", "afternoon": "Afternoon", "overtime": "Overtime"}


@dataclass(frozen=True)
class SegmentTimes:
    time_in: Optional[str] = None
    time_out: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return bool(self.time_in) and not self.time_out


@dataclass(frozen=True)
class LegacySession:
    """Enregistrement historique : une seule paire clockIn/clockOut."""
    time_in: Optional[str] = None
    time_out: Optional[str] = None


@dataclass(frozen=True)
class SegmentedSession:
    morning: SegmentTimes = field(default_factory=SegmentTimes)
    afternoon: SegmentTimes = field(default_factory=SegmentTimes)
    overtime: SegmentTimes = field(default_factory=SegmentTimes)

    def segment(self, name: str) -> SegmentTimes:
        return getattr(self, name)


DaySession = Union[LegacySession, SegmentedSession]


@dataclass(frozen=True)
class NextAction:
    """Action proposée à l'élève ; segment None pour un enregistrement historique."""
    direction: Direction
    segment: Optional[Segment] = None

    @property
    def label(self) -> str:
        verb = "In" if self.direction == "in" else "Out"
        if self.segment is None:
            return verb
        return f"{SEGMENT_LABELS[self.segment]} {verb}"


def day_session_from_record(record: Optional[AttendanceRecord]) -> DaySession:
    """Construit la variante correspondant à l'enregistrement du jour (None = journée vierge)."""
    if record is None:
        return SegmentedSession()
    if record.is_segmented():
        return SegmentedSession(
            morning=SegmentTimes(record.morning_time_in, record.morning_time_out),
            afternoon=SegmentTimes(record.afternoon_time_in, record.afternoon_time_out),
            overtime=SegmentTimes(record.overtime_time_in, record.overtime_time_out),
        )
    if record.time_in or record.time_out:
        return LegacySession(record.time_in, record.time_out)
    return SegmentedSession()


def next_action(session: DaySession) -> Optional[NextAction]:
    """
    Prochaine action autorisée, ou None si la journée est close.

    Journée segmentée : segments parcourus dans l'ordre matin, après-midi,
    heures sup. Le premier sans entrée donne son entrée, sinon le premier ouvert
    donne sa sortie. Un matin sauté est donc reproposé avant l'après-midi.
    """
    if isinstance(session, LegacySession):
        if not session.time_in:
            return NextAction("in")
        if not session.time_out:
            return NextAction("out")
        return None

    for name in SEGMENTS:
        current = session.segment(name)
        if not current.time_in:
            return NextAction("in", name)
        if not current.time_out:
            return NextAction("out", name)
    return None
