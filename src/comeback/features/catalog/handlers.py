"""API handlers for the catalog: artists, releases, companies, news and the release calendar."""

import asyncio
import logging
import math
import random
from calendar import monthrange
from datetime import UTC, date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from postgrest.exceptions import APIError

from src.comeback.services.auth.dependencies import require_admin
from src.comeback.services.database import SupabaseQueryBuilder, get_db
from src.comeback.services.database.errors import (
    bad_request_error,
    handle_supabase_error,
    internal_error,
    not_found_error,
)
from src.comeback.services.database.models import (
    CompleteArtist,
    CompleteCompany,
    CompleteRelease,
    DeleteResponse,
    PaginatedReleases,
    User,
)
from src.comeback.services.database.transformers import (
    transform_junction,
    transform_release_with_relations,
)
from src.comeback.services.rate_limiter import public_rate_limit, write_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])

RELEASE_WITH_RELATIONS = (
    "*, "
    "artists:artist_releases(artist:artists(*)), "
    "musics:music_releases(music:musics(*)), "
    "platform_links:release_platform_links(*)"
)

# artist_releases is inner-joined so the artist filter drops non-matching releases
RELEASE_WITH_RELATIONS_BY_ARTIST = (
    "*, "
    "artists:artist_releases!inner(artist:artists(*)), "
    "musics:music_releases(music:musics(*)), "
    "platform_links:release_platform_links(*)"
)

RELEASE_SORT_COLUMNS = {"date", "name", "created_at", "type"}

RELEASE_WITH_ARTISTS = "*, artists:artist_releases(artist:artists(*))"

RANDOM_MUSICS_PER_ARTIST = 9
RANDOM_MUSICS_FALLBACK_POOL = 50
SUGGESTED_RELEASES_LIMIT = 6


@router.get("/artists/latest")
@public_rate_limit
async def get_latest_artists(
    request: Request,
    limit: int = Query(8, ge=1, le=100),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """Most recently added artists, newest first."""
    try:
        return await db.list_records("artists", order_by="created_at", limit=limit)
    except APIError as e:
        raise handle_supabase_error(e, "artists.latest") from e


@router.get("/releases/latest")
@public_rate_limit
async def get_latest_releases(
    request: Request,
    limit: int = Query(8, ge=1, le=100),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """Latest releases by release date, newest first."""
    try:
        return await db.list_records("releases", order_by="date", limit=limit)
    except APIError as e:
        raise handle_supabase_error(e, "releases.latest") from e


@router.get("/news/latest")
@public_rate_limit
async def get_latest_news(
    request: Request,
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """News items in chronological order."""
    try:
        return await db.list_records("news", order_by="date", order_desc=False)
    except APIError as e:
        raise handle_supabase_error(e, "news.latest") from e


@router.get("/releases/paginated", response_model=PaginatedReleases)
@public_rate_limit
async def get_paginated_releases(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(24, ge=1, le=100),
    search: str | None = Query(None, description="Case-insensitive match on the release name"),
    type: str | None = Query(None, description="Release type, e.g. ALBUM or SINGLE"),
    verified: bool | None = Query(None),
    artist_ids: str | None = Query(None, description="Comma-separated artist ids"),
    order_by: str = Query("date"),
    order_direction: Literal["asc", "desc"] = Query("desc"),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> PaginatedReleases:
    """
    Page through releases with their artists, musics and platform links.

    Filters combine with AND. The total is computed over the filtered set,
    so total_pages = ceil(total / limit).

    Raises:
        HTTPException: 400 for an unknown sort column, or the mapped
            status of a database error
    """
    if order_by not in RELEASE_SORT_COLUMNS:
        raise bad_request_error(
            f"Cannot sort releases by '{order_by}'. "
            f"Use one of: {', '.join(sorted(RELEASE_SORT_COLUMNS))}"
        )

    ids = [i.strip() for i in artist_ids.split(",") if i.strip()] if artist_ids else []
    offset = (page - 1) * limit

    try:
        columns = RELEASE_WITH_RELATIONS_BY_ARTIST if ids else RELEASE_WITH_RELATIONS
        query = db.client.table("releases").select(columns, count="exact")

        if ids:
            query = query.in_("artist_releases.artist_id", ids)
        if search:
            query = query.ilike("name", f"%{search}%")
        if type:
            query = query.eq("type", type)
        if verified is not None:
            query = query.eq("verified", verified)

        response = await (
            query.order(order_by, desc=order_direction == "desc")
            .range(offset, offset + limit - 1)
            .execute()
        )
    except APIError as e:
        raise handle_supabase_error(e, "releases.paginated") from e
    except Exception as e:
        raise internal_error("Failed to fetch paginated releases", e) from e

    total = response.count or 0
    logger.debug(
        f"Fetched releases page {page}",
        extra={"total": total, "returned": len(response.data or [])},
    )

    return PaginatedReleases(
        releases=[transform_release_with_relations(r) for r in response.data or []],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


async def _random_artist_musics(db: SupabaseQueryBuilder, artist_id: str) -> list[dict[str, Any]]:
    """Pick sample musics of an artist, server-side when the RPC exists."""
    try:
        picked = await db.rpc(
            "get_random_music_ids_by_artist",
            {"artist_id_param": artist_id, "count_param": RANDOM_MUSICS_PER_ARTIST},
        )
    except APIError as e:
        logger.warning(
            f"Random music RPC failed for artist {artist_id}, shuffling locally: {e.message}",
            extra={"code": e.code},
        )
        links = await db.list_records(
            "music_artists",
            columns="music:musics(*)",
            filters={"artist_id": artist_id},
            limit=RANDOM_MUSICS_FALLBACK_POOL,
        )
        musics = transform_junction(links, "music")
        random.shuffle(musics)
        return musics[:RANDOM_MUSICS_PER_ARTIST]

    music_ids = [m["id"] for m in picked or [] if m.get("id")]
    if not music_ids:
        return []
    response = await db.client.table("musics").select("*").in_("id", music_ids).execute()
    return response.data or []


@router.get("/artists/{artist_id}/complete", response_model=CompleteArtist)
@public_rate_limit
async def get_complete_artist(
    request: Request,
    artist_id: str,
    db: SupabaseQueryBuilder = Depends(get_db),
) -> CompleteArtist:
    """
    Artist page data: the artist with groups, members, releases and
    companies, social and platform links, and up to 9 random musics.

    Raises:
        HTTPException: 404 for an unknown artist, or the mapped status of a
            database error
    """
    try:
        artist = await db.get_by_id("artists", artist_id)
        if artist is None:
            raise not_found_error("Artist", artist_id)

        groups, members, releases, companies, social_links, platform_links = await asyncio.gather(
            db.list_records(
                "artist_relations",
                columns="group:artists!artist_relations_group_id_fkey(*)",
                filters={"member_id": artist_id},
            ),
            db.list_records(
                "artist_relations",
                columns="member:artists!artist_relations_member_id_fkey(*)",
                filters={"group_id": artist_id},
            ),
            db.list_records(
                "artist_releases", columns="release:releases(*)", filters={"artist_id": artist_id}
            ),
            db.list_records(
                "artist_companies",
                columns="*, company:companies(*)",
                filters={"artist_id": artist_id},
            ),
            db.list_records("artist_social_links", filters={"artist_id": artist_id}),
            db.list_records("artist_platform_links", filters={"artist_id": artist_id}),
        )
        random_musics = await _random_artist_musics(db, artist_id)
    except APIError as e:
        raise handle_supabase_error(e, "artists.complete") from e

    return CompleteArtist(
        artist={
            **artist,
            "groups": transform_junction(groups, "group"),
            "members": transform_junction(members, "member"),
            "releases": transform_junction(releases, "release"),
            "companies": companies,
        },
        social_links=social_links,
        platform_links=platform_links,
        random_musics=random_musics,
    )


@router.get("/releases/{release_id}/complete", response_model=CompleteRelease)
@public_rate_limit
async def get_complete_release(
    request: Request,
    release_id: str,
    db: SupabaseQueryBuilder = Depends(get_db),
) -> CompleteRelease:
    """
    Release page data: the release with its artists and musics, and up to
    6 other releases by the same artists, newest first.

    Raises:
        HTTPException: 404 for an unknown release, or the mapped status of a
            database error
    """
    try:
        release = await db.get_by_id("releases", release_id)
        if release is None:
            raise not_found_error("Release", release_id)

        artist_links, music_links = await asyncio.gather(
            db.list_records(
                "artist_releases", columns="artist:artists(*)", filters={"release_id": release_id}
            ),
            db.list_records(
                "music_releases", columns="music:musics(*)", filters={"release_id": release_id}
            ),
        )
        artists = transform_junction(artist_links, "artist")

        suggested: list[dict[str, Any]] = []
        artist_ids = [a["id"] for a in artists]
        if artist_ids:
            response = await (
                db.client.table("artist_releases")
                .select("release_id")
                .in_("artist_id", artist_ids)
                .neq("release_id", release_id)
                .limit(SUGGESTED_RELEASES_LIMIT)
                .execute()
            )
            # a release shared by several of the artists shows up once per artist
            suggested_ids = list(dict.fromkeys(row["release_id"] for row in response.data or []))
            if suggested_ids:
                response = await (
                    db.client.table("releases")
                    .select(RELEASE_WITH_ARTISTS)
                    .in_("id", suggested_ids)
                    .order("date", desc=True)
                    .execute()
                )
                suggested = [
                    {**r, "artists": transform_junction(r.get("artists"), "artist")}
                    for r in response.data or []
                ]
    except APIError as e:
        raise handle_supabase_error(e, "releases.complete") from e

    return CompleteRelease(
        release={
            **release,
            "artists": artists,
            "musics": transform_junction(music_links, "music"),
        },
        suggested_releases=suggested,
    )


@router.get("/companies/{company_id}/complete", response_model=CompleteCompany)
@public_rate_limit
async def get_complete_company(
    request: Request,
    company_id: str,
    db: SupabaseQueryBuilder = Depends(get_db),
) -> CompleteCompany:
    """Company page data: the company and its artists, current ones first."""
    try:
        company = await db.get_by_id("companies", company_id)
        if company is None:
            raise not_found_error("Company", company_id)

        company_artists = await db.list_records(
            "artist_companies",
            columns="*, artist:artists(*)",
            filters={"company_id": company_id},
            order_by="is_current",
        )
    except APIError as e:
        raise handle_supabase_error(e, "companies.complete") from e

    return CompleteCompany(company=company, company_artists=company_artists)


@router.get("/calendar/releases")
@public_rate_limit
async def get_calendar_releases(
    request: Request,
    month: int | None = Query(None, description="Month, 0 for January to 11 for December"),
    year: int | None = Query(None),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> list[dict[str, Any]]:
    """
    Releases dated within one month, newest first, with their artists.

    Defaults to the current month.

    Raises:
        HTTPException: 400 for a month outside 0-11 or a year outside
            1900-2100, or the mapped status of a database error
    """
    today = datetime.now(UTC).date()
    month = today.month - 1 if month is None else month
    year = today.year if year is None else year

    if not 0 <= month <= 11:
        raise bad_request_error("Month must be between 0 and 11")
    if not 1900 <= year <= 2100:
        raise bad_request_error("Year must be between 1900 and 2100")

    start = date(year, month + 1, 1)
    end = start.replace(day=monthrange(year, month + 1)[1])

    try:
        response = await (
            db.client.table("releases")
            .select(RELEASE_WITH_ARTISTS)
            .gte("date", start.isoformat())
            .lte("date", end.isoformat())
            .order("date", desc=True)
            .execute()
        )
    except APIError as e:
        raise handle_supabase_error(e, "calendar.releases") from e

    return [
        {**r, "artists": transform_junction(r.get("artists"), "artist")}
        for r in response.data or []
    ]


@router.delete("/releases/{release_id}", response_model=DeleteResponse)
@write_rate_limit
async def delete_release(
    request: Request,
    release_id: str,
    admin: User = Depends(require_admin),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> DeleteResponse:
    """
    Delete a release with its artist, music and platform links.

    Musics left without any release afterwards are deleted too, together
    with their music_artists links. A failed link cleanup is logged and the
    release delete still runs.

    Raises:
        HTTPException: 404 for an unknown release, or the mapped status of a
            database error
    """
    try:
        release = await db.get_by_id("releases", release_id, columns="id")
        if release is None:
            raise not_found_error("Release", release_id)

        music_links = await db.list_records(
            "music_releases", columns="music_id", filters={"release_id": release_id}
        )
        music_ids = list(dict.fromkeys(link["music_id"] for link in music_links))

        for table in ("artist_releases", "music_releases", "release_platform_links"):
            try:
                await db.delete_where_in(table, "release_id", [release_id])
            except APIError as e:
                logger.error(f"Failed to delete {table} of release {release_id}: {e.message}")

        if music_ids:
            response = await (
                db.client.table("music_releases")
                .select("music_id")
                .in_("music_id", music_ids)
                .execute()
            )
            still_linked = {row["music_id"] for row in response.data or []}
            orphan_ids = [music_id for music_id in music_ids if music_id not in still_linked]
            if orphan_ids:
                try:
                    await db.delete_where_in("music_artists", "music_id", orphan_ids)
                    await db.delete_where_in("musics", "id", orphan_ids)
                except APIError as e:
                    logger.error(
                        f"Failed to delete orphan musics of release {release_id}: {e.message}",
                        extra={"orphan_ids": orphan_ids},
                    )

        await db.delete_where_in("releases", "id", [release_id])
    except APIError as e:
        raise handle_supabase_error(e, "releases.delete") from e

    logger.info(
        f"Release {release_id} deleted",
        extra={"admin_id": admin.id, "music_ids": music_ids},
    )
    return DeleteResponse()
