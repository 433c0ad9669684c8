"""Tests for the orphan music cleanup endpoint."""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from src.comeback.main import app
from src.comeback.services.database import SupabaseQueryBuilder, get_db

CLEANUP_URL = "/api/v1/admin/cleanup-orphan-musics"


def _stub_catalog(mock_db, music_count: int = 3, linked: tuple[str, ...] = ("m0",)) -> None:
    musics = [{"id": f"m{i}", "name": f"Track {i}"} for i in range(music_count)]
    # a music linked to several releases is counted once
    links = [{"music_id": music_id} for music_id in linked * 2]

    async def list_all(table, columns="*", **kwargs):
        return {"musics": musics, "music_releases": links}[table]

    mock_db.list_all.side_effect = list_all
    mock_db.delete_where_in.return_value = 0


def _row_capped_client(tables: dict[str, list[dict]], cap: int = 2) -> tuple[MagicMock, dict[str, MagicMock]]:
    """Supabase client double whose selects return at most cap rows per request."""
    queries = {}
    for name, rows in tables.items():
        query = MagicMock()
        query.select.return_value = query
        query.order.return_value = query

        def page(start, end, rows=rows):
            response = MagicMock(data=rows[start : min(end + 1, start + cap)], count=len(rows))
            page_query = MagicMock()
            page_query.execute = AsyncMock(return_value=response)
            return page_query

        query.range.side_effect = page
        query.delete.return_value.in_.return_value.execute = AsyncMock(return_value=MagicMock(data=[]))
        queries[name] = query

    client = MagicMock()
    client.table.side_effect = lambda name: queries[name]
    return client, queries


class TestCleanupOrphanMusics:
    """Tests for POST /admin/cleanup-orphan-musics."""

    def test_deletes_orphans_and_their_artist_links(
        self, client: TestClient, mock_db, users_repo, admin_headers
    ) -> None:
        _stub_catalog(mock_db)

        response = client.post(CLEANUP_URL, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["dry_run"] is False
        assert data["stats"] == {
            "total_musics": 3,
            "linked_musics": 1,
            "orphan_musics": 2,
            "deleted": 2,
        }
        assert [c.args for c in mock_db.delete_where_in.await_args_list] == [
            ("music_artists", "music_id", ["m1", "m2"]),
            ("musics", "id", ["m1", "m2"]),
        ]

    def test_dry_run_previews_without_deleting(
        self, client: TestClient, mock_db, users_repo, admin_headers
    ) -> None:
        _stub_catalog(mock_db, music_count=30)

        response = client.post(f"{CLEANUP_URL}?dry_run=true", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["dry_run"] is True
        assert data["stats"]["orphan_musics"] == 29
        assert data["stats"]["deleted"] == 0
        assert len(data["orphan_musics"]) == 20
        assert data["orphan_musics"][0] == {"id": "m1", "name": "Track 1"}
        mock_db.delete_where_in.assert_not_called()

    def test_nothing_to_delete(self, client: TestClient, mock_db, users_repo, admin_headers) -> None:
        _stub_catalog(mock_db, music_count=1)

        response = client.post(CLEANUP_URL, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["stats"]["orphan_musics"] == 0
        mock_db.delete_where_in.assert_not_called()

    def test_link_cleanup_failure_does_not_stop_deletion(
        self, client: TestClient, mock_db, users_repo, admin_headers
    ) -> None:
        _stub_catalog(mock_db)
        error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
        mock_db.delete_where_in.side_effect = [error, 2]

        response = client.post(CLEANUP_URL, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["stats"]["deleted"] == 2

    def test_music_delete_failure_is_reported(
        self, client: TestClient, mock_db, users_repo, admin_headers
    ) -> None:
        _stub_catalog(mock_db)
        error = APIError({"message": "still referenced", "code": "23503", "hint": None, "details": None})
        mock_db.delete_where_in.side_effect = [0, error]

        response = client.post(CLEANUP_URL, headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["detail"]["context"] == "admin.cleanup_orphan_musics"

    def test_user_role_is_forbidden(self, client: TestClient, mock_db, users_repo, user_headers) -> None:
        response = client.post(CLEANUP_URL, headers=user_headers)

        assert response.status_code == 403
        mock_db.list_all.assert_not_called()

    def test_links_beyond_the_row_cap_keep_their_musics(
        self, client: TestClient, users_repo, admin_headers
    ) -> None:
        musics = [{"id": f"m{i}", "name": f"Track {i}"} for i in range(5)]
        links = [{"music_id": f"m{i}"} for i in range(4) for _ in range(2)]
        supabase, queries = _row_capped_client(
            {"musics": musics, "music_releases": links, "music_artists": []}
        )
        app.dependency_overrides[get_db] = lambda: SupabaseQueryBuilder(supabase)

        response = client.post(CLEANUP_URL, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["stats"] == {
            "total_musics": 5,
            "linked_musics": 4,
            "orphan_musics": 1,
            "deleted": 1,
        }
        queries["musics"].delete.return_value.in_.assert_called_once_with("id", ["m4"])
        queries["music_artists"].delete.return_value.in_.assert_called_once_with("music_id", ["m4"])
