"""Generic database utility functions for Supabase interactions."""

import logging
from typing import Any
from uuid import UUID

from supabase import AsyncClient

from src.comeback.services.database.connection import (
    get_supabase_admin_client,
    get_supabase_client,
)

logger = logging.getLogger(__name__)


class SupabaseQueryBuilder:
    """Helper class for building and executing Supabase queries."""

    def __init__(self, client: AsyncClient | None = None) -> None:
        """
        Initialize query builder.

        Args:
            client: Supabase async client instance (uses default if None)
        """
        self.client = client or get_supabase_client()

    async def get_by_id(
        self, table: str, record_id: UUID | str, columns: str = "*"
    ) -> dict[str, Any] | None:
        """
        Fetch a single record by ID.

        Args:
            table: Table name
            record_id: Record UUID or ID
            columns: Columns to select (default: "*")

        Returns:
            Record dictionary or None if not found

        Example:
            >>> builder = SupabaseQueryBuilder()
            >>> artist = await builder.get_by_id("artists", artist_id)
        """
        response = (
            await self.client.table(table).select(columns).eq("id", str(record_id)).execute()
        )
        return response.data[0] if response.data else None

    async def get_single(self, table: str, record_id: UUID | str, columns: str = "*") -> dict[str, Any]:
        """
        Fetch exactly one record by ID.

        Unlike get_by_id, a missing row is reported by PostgREST as an
        APIError with code PGRST116 so callers can tell "absent" from "failed".

        Raises:
            postgrest.exceptions.APIError: On missing row or any database error
        """
        response = (
            await self.client.table(table)
            .select(columns)
            .eq("id", str(record_id))
            .single()
            .execute()
        )
        return response.data

    async def list_records(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        order_desc: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        List records with optional filtering, ordering, and pagination.

        Args:
            table: Table name
            columns: Columns to select (default: "*")
            filters: Dictionary of field:value pairs for filtering
            order_by: Column to order by
            order_desc: Order descending (default: True)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of record dictionaries

        Example:
            >>> builder = SupabaseQueryBuilder()
            >>> artists = await builder.list_records(
            ...     "artists",
            ...     filters={"active_career": True},
            ...     order_by="created_at",
            ...     limit=8
            ... )
        """
        query = self.client.table(table).select(columns)

        if filters:
            for field, value in filters.items():
                query = query.eq(field, value)

        if order_by:
            query = query.order(order_by, desc=order_desc)

        if limit is not None:
            query = query.range(offset, offset + limit - 1)

        response = await query.execute()
        return response.data or []

    async def list_all(
        self,
        table: str,
        columns: str = "*",
        order_by: tuple[str, ...] = ("id",),
        page_size: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Fetch every row of a table, page by page.

        A single select is capped by the server's max-rows setting, so pages
        are requested with .range() until the exact count is reached (or a
        short page comes back when no count is reported). The order_by
        columns must identify a row, or pages may overlap.

        Args:
            table: Table name
            columns: Columns to select (default: "*")
            order_by: Columns giving a stable order across pages
            page_size: Rows requested per page

        Returns:
            Every row of the table
        """
        rows: list[dict[str, Any]] = []
        while True:
            query = self.client.table(table).select(columns, count="exact")
            for column in order_by:
                query = query.order(column)
            response = await query.range(len(rows), len(rows) + page_size - 1).execute()
            page = response.data or []
            rows.extend(page)

            if not page:
                return rows
            if response.count is not None:
                if len(rows) >= response.count:
                    return rows
            elif len(page) < page_size:
                return rows

    async def count_records(self, table: str, filters: dict[str, Any] | None = None) -> int:
        """
        Count records with optional filtering.

        Args:
            table: Table name
            filters: Dictionary of field:value pairs for filtering

        Returns:
            Total count of matching records

        Example:
            >>> builder = SupabaseQueryBuilder()
            >>> count = await builder.count_records("artists", {"active_career": True})
        """
        query = self.client.table(table).select("id", count="exact")

        if filters:
            for field, value in filters.items():
                query = query.eq(field, value)

        response = await query.execute()
        return response.count or 0

    async def insert_record(self, table: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """
        Insert a single record.

        Args:
            table: Table name
            data: Record data dictionary

        Returns:
            Inserted record dictionary or None if nothing was returned

        Raises:
            postgrest.exceptions.APIError: If insert operation fails
        """
        response = await self.client.table(table).insert(data).execute()
        return response.data[0] if response.data else None

    async def update_record(
        self, table: str, record_id: UUID | str, data: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Update a record by ID.

        Args:
            table: Table name
            record_id: Record UUID or ID
            data: Fields to update

        Returns:
            Updated record dictionary or None if not found

        Example:
            >>> builder = SupabaseQueryBuilder()
            >>> updated = await builder.update_record(
            ...     "users",
            ...     user_id,
            ...     {"name": "Jane", "updated_at": datetime.now(UTC).isoformat()}
            ... )
        """
        response = (
            await self.client.table(table).update(data).eq("id", str(record_id)).execute()
        )
        return response.data[0] if response.data else None

    async def delete_where_in(self, table: str, field: str, values: list[Any]) -> int:
        """
        Delete every record whose field is in values.

        Returns:
            Number of deleted rows
        """
        if not values:
            return 0
        response = await self.client.table(table).delete().in_(field, values).execute()
        return len(response.data or [])

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        """
        Call a PostgreSQL function through PostgREST.

        Args:
            function: Database function name
            params: Named arguments for the function

        Returns:
            The function's result payload
        """
        try:
            response = await self.client.rpc(function, params or {}).execute()
            return response.data
        except Exception as e:
            logger.error(f"RPC {function} failed: {e}")
            raise


def get_query_builder(
    client: AsyncClient | None = None, use_admin: bool = True
) -> SupabaseQueryBuilder:
    """
    Get instance of SupabaseQueryBuilder.

    Args:
        client: Optional Supabase client (uses default if None)
        use_admin: If True (default), uses admin client that bypasses RLS.
                   Set to False for operations that should respect RLS policies.

    Returns:
        SupabaseQueryBuilder instance
    """
    if client is None:
        client = get_supabase_admin_client() if use_admin else get_supabase_client()
    return SupabaseQueryBuilder(client)


def get_db() -> SupabaseQueryBuilder:
    """FastAPI dependency: query builder on the service-role client."""
    return get_query_builder()
