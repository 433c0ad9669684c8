"""Tests for database utility functions."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from src.comeback.services.database.utils import SupabaseQueryBuilder, get_query_builder


def _response(data=None, count=None) -> MagicMock:
    response = MagicMock()
    response.data = data
    response.count = count
    return response


@pytest.fixture
def mock_client() -> MagicMock:
    """Mock Supabase async client."""
    return MagicMock()


@pytest.fixture
def sample_id() -> str:
    """Sample UUID."""
    return str(uuid4())


@pytest.mark.asyncio
class TestSupabaseQueryBuilder:
    """Tests for SupabaseQueryBuilder class."""

    async def test_get_by_id_found(self, mock_client: MagicMock, sample_id: str) -> None:
        mock_client.table.return_value.select.return_value.eq.return_value.execute = AsyncMock(
            return_value=_response([{"id": sample_id, "name": "BTS"}])
        )

        result = await SupabaseQueryBuilder(mock_client).get_by_id("artists", sample_id)

        assert result["id"] == sample_id
        mock_client.table.assert_called_once_with("artists")

    async def test_get_by_id_not_found(self, mock_client: MagicMock, sample_id: str) -> None:
        mock_client.table.return_value.select.return_value.eq.return_value.execute = AsyncMock(
            return_value=_response([])
        )

        assert await SupabaseQueryBuilder(mock_client).get_by_id("artists", sample_id) is None

    async def test_get_single(self, mock_client: MagicMock, sample_id: str) -> None:
        query = mock_client.table.return_value.select.return_value.eq.return_value
        query.single.return_value.execute = AsyncMock(return_value=_response({"id": sample_id}))

        result = await SupabaseQueryBuilder(mock_client).get_single("users", sample_id)

        assert result == {"id": sample_id}
        mock_client.table.return_value.select.return_value.eq.assert_called_once_with("id", sample_id)

    async def test_list_records_with_filters(self, mock_client: MagicMock) -> None:
        query = mock_client.table.return_value.select.return_value
        query.eq.return_value.eq.return_value.order.return_value.range.return_value.execute = AsyncMock(
            return_value=_response([{"id": "1"}, {"id": "2"}])
        )

        results = await SupabaseQueryBuilder(mock_client).list_records(
            "artists",
            filters={"active_career": True, "verified": True},
            order_by="created_at",
            limit=8,
            offset=16,
        )

        assert len(results) == 2
        query.eq.return_value.eq.return_value.order.assert_called_once_with("created_at", desc=True)
        query.eq.return_value.eq.return_value.order.return_value.range.assert_called_once_with(16, 23)

    async def test_list_records_empty(self, mock_client: MagicMock) -> None:
        mock_client.table.return_value.select.return_value.execute = AsyncMock(
            return_value=_response(None)
        )

        assert await SupabaseQueryBuilder(mock_client).list_records("news") == []

    async def test_count_records(self, mock_client: MagicMock) -> None:
        query = mock_client.table.return_value.select.return_value
        query.eq.return_value.execute = AsyncMock(return_value=_response([], count=42))

        count = await SupabaseQueryBuilder(mock_client).count_records("artists", {"active_career": True})

        assert count == 42
        mock_client.table.return_value.select.assert_called_once_with("id", count="exact")

    async def test_count_records_none_is_zero(self, mock_client: MagicMock) -> None:
        mock_client.table.return_value.select.return_value.execute = AsyncMock(
            return_value=_response([], count=None)
        )

        assert await SupabaseQueryBuilder(mock_client).count_records("news") == 0

    async def test_insert_record(self, mock_client: MagicMock) -> None:
        mock_client.table.return_value.insert.return_value.execute = AsyncMock(
            return_value=_response([{"id": "u1", "role": "USER"}])
        )

        result = await SupabaseQueryBuilder(mock_client).insert_record("users", {"id": "u1"})

        assert result == {"id": "u1", "role": "USER"}

    async def test_update_record(self, mock_client: MagicMock, sample_id: str) -> None:
        mock_client.table.return_value.update.return_value.eq.return_value.execute = AsyncMock(
            return_value=_response([])
        )

        assert await SupabaseQueryBuilder(mock_client).update_record("users", sample_id, {}) is None
        mock_client.table.return_value.update.return_value.eq.assert_called_once_with("id", sample_id)

    async def test_delete_where_in(self, mock_client: MagicMock) -> None:
        mock_client.table.return_value.delete.return_value.in_.return_value.execute = AsyncMock(
            return_value=_response([{"id": "m1"}, {"id": "m2"}])
        )

        deleted = await SupabaseQueryBuilder(mock_client).delete_where_in("musics", "id", ["m1", "m2"])

        assert deleted == 2
        mock_client.table.return_value.delete.return_value.in_.assert_called_once_with("id", ["m1", "m2"])

    async def test_delete_where_in_nothing(self, mock_client: MagicMock) -> None:
        assert await SupabaseQueryBuilder(mock_client).delete_where_in("musics", "id", []) == 0
        mock_client.table.assert_not_called()

    async def test_list_all_pages_past_the_row_cap(self, mock_client: MagicMock) -> None:
        """The server returns at most 2 rows per request here."""
        rows = [{"music_id": f"m{i}"} for i in range(5)]
        query = mock_client.table.return_value.select.return_value.order.return_value.order.return_value

        def page(start, end):
            response = _response(rows[start : min(end + 1, start + 2)], count=len(rows))
            page_query = MagicMock()
            page_query.execute = AsyncMock(return_value=response)
            return page_query

        query.range.side_effect = page

        result = await SupabaseQueryBuilder(mock_client).list_all(
            "music_releases", columns="music_id", order_by=("music_id", "release_id")
        )

        assert result == rows
        assert [c.args for c in query.range.call_args_list] == [(0, 999), (2, 1001), (4, 1003)]
        mock_client.table.return_value.select.assert_called_with("music_id", count="exact")

    async def test_list_all_without_count_stops_on_short_page(self, mock_client: MagicMock) -> None:
        query = mock_client.table.return_value.select.return_value.order.return_value
        first, second = MagicMock(), MagicMock()
        first.execute = AsyncMock(return_value=_response([{"id": "a"}, {"id": "b"}]))
        second.execute = AsyncMock(return_value=_response([{"id": "c"}]))
        query.range.side_effect = [first, second]

        result = await SupabaseQueryBuilder(mock_client).list_all("musics", page_size=2)

        assert [r["id"] for r in result] == ["a", "b", "c"]
        assert query.range.call_count == 2

    async def test_rpc(self, mock_client: MagicMock) -> None:
        mock_client.rpc.return_value.execute = AsyncMock(return_value=_response({"total": 3}))

        result = await SupabaseQueryBuilder(mock_client).rpc("get_stats", {"days": 30})

        assert result == {"total": 3}
        mock_client.rpc.assert_called_once_with("get_stats", {"days": 30})


class TestGetQueryBuilder:
    """Tests for get_query_builder() client selection."""

    def test_uses_given_client(self, mock_client: MagicMock) -> None:
        assert get_query_builder(mock_client).client is mock_client

    def test_defaults_to_admin_client(self) -> None:
        admin = MagicMock()
        with patch(
            "src.comeback.services.database.utils.get_supabase_admin_client", return_value=admin
        ):
            assert get_query_builder().client is admin

    def test_anon_client_when_respecting_rls(self) -> None:
        anon = MagicMock()
        with patch("src.comeback.services.database.utils.get_supabase_client", return_value=anon):
            assert get_query_builder(use_admin=False).client is anon
