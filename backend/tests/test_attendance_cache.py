"""
Tests unitaires du cache local des listes de présences.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import IntegrityError

from practicum_attendance.models.attendance_cache import CachedAttendanceList
from practicum_attendance.schemas.attendance import (
    AttendanceFilters,
    AttendanceListResponse,
    AttendanceRecord,
    Pagination,
)
from practicum_attendance.services.attendance_cache import (
    get_attendance_list,
    get_student_history,
    invalidate_student,
    make_query_key,
    purge_expired,
)

NOW = datetime(2024, 1, 15, 9, 0)


def make_page(ids, page=1, total_pages=1) -> AttendanceListResponse:
    return AttendanceListResponse(
        attendance=[
            AttendanceRecord(id=i, student_id="stu-1", practicum_id="prac-1", date="2024-01-15")
            for i in ids
        ],
        pagination=Pagination(current_page=page, total_pages=total_pages, total_items=len(ids), items_per_page=100),
    )


def make_db(cached=None):
    db = MagicMock()
    db.execute.return_value.scalar_one_or_none.return_value = cached
    return db


def make_cached(page: AttendanceListResponse, expires_at: datetime):
    row = MagicMock(spec=CachedAttendanceList)
    row.payload = page.model_dump_json(by_alias=True)
    row.expires_at = expires_at
    return row


class TestQueryKey:
    def test_cle_triee_sans_all(self):
        filters = AttendanceFilters(student_id="stu-1", status="all", page=1)
        assert make_query_key(filters) == "page=1&studentId=stu-1"


class TestGetAttendanceList:
    def test_cache_valide_sans_appel_api(self):
        api = MagicMock()
        db = make_db(make_cached(make_page(["a1", "a2"]), NOW + timedelta(seconds=60)))

        page = get_attendance_list(db, api, AttendanceFilters(student_id="stu-1"), now=NOW)

        api.list_attendance.assert_not_called()
        assert [r.id for r in page.attendance] == ["a1", "a2"]

    def test_absent_du_cache_recupere_et_stocke(self):
        api = MagicMock()
        api.list_attendance.return_value = make_page(["a1"])
        db = make_db(None)

        page = get_attendance_list(db, api, AttendanceFilters(student_id="stu-1"), now=NOW)

        assert page.attendance[0].id == "a1"
        added = db.add.call_args.args[0]
        assert isinstance(added, CachedAttendanceList)
        assert added.student_id == "stu-1"
        assert added.expires_at == NOW + timedelta(seconds=120)
        db.commit.assert_called_once()

    def test_cache_expire_rafraichi(self):
        api = MagicMock()
        api.list_attendance.return_value = make_page(["a3"])
        row = make_cached(make_page(["a1"]), NOW - timedelta(seconds=1))
        db = make_db(row)

        page = get_attendance_list(db, api, AttendanceFilters(student_id="stu-1"), now=NOW)

        assert page.attendance[0].id == "a3"
        assert '"a3"' in row.payload
        assert row.fetched_at == NOW
        db.add.assert_not_called()
        db.commit.assert_called_once()

    def test_insertion_concurrente_renvoie_la_page(self):
        """Deux appels ratent le cache en même temps : le second commit viole la clé unique."""
        api = MagicMock()
        api.list_attendance.return_value = make_page(["a1"])
        db = make_db(None)
        db.commit.side_effect = IntegrityError(
            "INSERT INTO attendance_cache", {}, Exception("UNIQUE constraint failed")
        )

        page = get_attendance_list(db, api, AttendanceFilters(student_id="stu-1"), now=NOW)

        assert page.attendance[0].id == "a1"
        db.rollback.assert_called_once()
        api.list_attendance.assert_called_once()

    def test_liste_globale_sous_la_cle_etoile(self):
        api = MagicMock()
        api.list_attendance.return_value = make_page([])
        db = make_db(None)

        get_attendance_list(db, api, AttendanceFilters(), now=NOW)

        assert db.add.call_args.args[0].student_id == "*"


class TestHistory:
    def test_parcours_des_pages(self):
        api = MagicMock()
        api.list_attendance.side_effect = [
            make_page(["a1", "a2"], page=1, total_pages=2),
            make_page(["a3"], page=2, total_pages=2),
        ]
        db = make_db(None)

        records = get_student_history(db, api, AttendanceFilters(student_id="stu-1"), now=NOW)

        assert [r.id for r in records] == ["a1", "a2", "a3"]
        pages = [c.args[0].page for c in api.list_attendance.call_args_list]
        assert pages == [1, 2]
        assert api.list_attendance.call_args_list[0].args[0].limit == 100


class TestInvalidation:
    def test_invalidation_eleve(self):
        db = MagicMock()
        db.execute.return_value.rowcount = 3
        assert invalidate_student(db, "stu-1") == 3
        db.commit.assert_called_once()

    def test_purge_des_entrees_expirees(self):
        db = MagicMock()
        db.execute.return_value.rowcount = 2
        assert purge_expired(db, now=NOW) == 2
        db.commit.assert_called_once()
