"""API handlers for musics: latest music videos, random picks and the paginated list."""

import asyncio
import logging
import math
import random
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from postgrest.exceptions import APIError

from src.comeback.services.database import SupabaseQueryBuilder, get_db
from src.comeback.services.database.errors import (
    bad_request_error,
    handle_supabase_error,
    internal_error,
)
from src.comeback.services.database.models import PaginatedMusics
from src.comeback.services.database.transformers import transform_music_with_relations
from src.comeback.services.rate_limiter import public_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/musics", tags=["musics"])

MUSIC_WITH_RELATIONS = (
    "*, "
    "artists:music_artists(artist:artists(*)), "
    "releases:music_releases(release:releases(*))"
)

MUSIC_SORT_COLUMNS = {"date", "name", "created_at", "release_year"}

# alternate versions kept out of the paginated list
EXCLUDED_NAME_PATTERNS = ("%Inst.%", "%Instrumental%", "%Sped Up%")


def _split_csv(value: str | None) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()] if value else []


@router.get("/latest-mvs")
@public_rate_limit
async def get_latest_mvs(
    request: Request,
    limit: int = Query(14, ge=1, le=100),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """Latest musics that have a YouTube video, newest first."""
    try:
        response = await (
            db.client.table("musics")
            .select("*")
            .not_.is_("id_youtube", "null")
            .order("date", desc=True)
            .limit(limit)
            .execute()
        )
    except APIError as e:
        raise handle_supabase_error(e, "musics.latest_mvs") from e
    return response.data or []


@router.get("/random")
@public_rate_limit
async def get_random_musics(
    request: Request,
    limit: int = Query(4, ge=1, le=50),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """
    Random musics.

    Picked by the get_random_musics database function; when it fails, a
    shuffle of the latest musics is returned instead.
    """
    try:
        return await db.rpc("get_random_musics", {"limit_count": limit}) or []
    except APIError as e:
        logger.warning(f"Random music RPC failed, shuffling latest musics: {e.message}")

    try:
        musics = await db.list_records("musics", order_by="created_at", limit=limit * 3)
    except APIError as e:
        raise handle_supabase_error(e, "musics.random") from e

    random.shuffle(musics)
    return musics[:limit]


async def _music_ids_for_filters(
    db: SupabaseQueryBuilder, artist_ids: list[str], styles: list[str]
) -> set[str] | None:
    """
    Ids of musics by the given artists or by artists of the given styles.

    Returns:
        The union of both sets, or None when neither filter is requested
    """
    if not artist_ids and not styles:
        return None

    music_ids: set[str] = set()
    if artist_ids:
        links = await (
            db.client.table("music_artists")
            .select("music_id")
            .in_("artist_id", artist_ids)
            .execute()
        )
        music_ids.update(link["music_id"] for link in links.data or [])

    if styles:
        artists = await db.client.table("artists").select("id").overlaps("styles", styles).execute()
        styled_ids = [a["id"] for a in artists.data or []]
        if styled_ids:
            links = await (
                db.client.table("music_artists")
                .select("music_id")
                .in_("artist_id", styled_ids)
                .execute()
            )
            music_ids.update(link["music_id"] for link in links.data or [])

    return music_ids


def _apply_music_filters(
    query: Any,
    music_ids: set[str] | None,
    search: str | None,
    years: list[int],
    ismv: bool | None,
) -> Any:
    if music_ids is not None:
        query = query.in_("id", sorted(music_ids))
    if search:
        query = query.ilike("name", f"%{search}%")
    if years:
        query = query.in_("release_year", years)
    if ismv is not None:
        query = query.eq("ismv", ismv)
    for pattern in EXCLUDED_NAME_PATTERNS:
        query = query.not_.ilike("name", pattern)
    return query


@router.get("/paginated", response_model=PaginatedMusics)
@public_rate_limit
async def get_paginated_musics(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, description="Case-insensitive match on the music name"),
    years: str | None = Query(None, description="Comma-separated release years"),
    ismv: bool | None = Query(None, description="Only music videos (true) or only audio (false)"),
    artist_ids: str | None = Query(None, description="Comma-separated artist ids"),
    styles: str | None = Query(None, description="Comma-separated artist styles"),
    order_by: str = Query("date"),
    order_direction: Literal["asc", "desc"] = Query("desc"),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> PaginatedMusics:
    """
    Page through musics with their artists and releases.

    Artist and style filters select musics by any matching artist (their
    union); the other filters combine with AND. Instrumental and sped-up
    versions are always left out.

    Raises:
        HTTPException: 400 for an unknown sort column or a non-numeric
            year, or the mapped status of a database error
    """
    if order_by not in MUSIC_SORT_COLUMNS:
        raise bad_request_error(
            f"Cannot sort musics by '{order_by}'. "
            f"Use one of: {', '.join(sorted(MUSIC_SORT_COLUMNS))}"
        )
    try:
        year_values = [int(y) for y in _split_csv(years)]
    except ValueError as e:
        raise bad_request_error("Years must be comma-separated numbers") from e

    offset = (page - 1) * limit

    try:
        music_ids = await _music_ids_for_filters(db, _split_csv(artist_ids), _split_csv(styles))
        if music_ids is not None and not music_ids:
            return PaginatedMusics(musics=[], total=0, page=page, limit=limit, total_pages=0)

        count_query = _apply_music_filters(
            db.client.table("musics").select("id", count="exact", head=True),
            music_ids,
            search,
            year_values,
            ismv,
        )
        data_query = _apply_music_filters(
            db.client.table("musics").select(MUSIC_WITH_RELATIONS),
            music_ids,
            search,
            year_values,
            ismv,
        )
        count_response, data_response = await asyncio.gather(
            count_query.execute(),
            data_query.order(order_by, desc=order_direction == "desc")
            .range(offset, offset + limit - 1)
            .execute(),
        )
    except APIError as e:
        raise handle_supabase_error(e, "musics.paginated") from e
    except Exception as e:
        raise internal_error("Failed to fetch paginated musics", e) from e

    total = count_response.count or 0
    return PaginatedMusics(
        musics=[transform_music_with_relations(m) for m in data_response.data or []],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )
