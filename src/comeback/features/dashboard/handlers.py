"""API handlers for the admin dashboard."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Awaitable, TypeVar

from fastapi import APIRouter, Depends, Request

from src.comeback.services.auth.dependencies import require_admin
from src.comeback.services.database import SupabaseQueryBuilder, get_db
from src.comeback.services.database.models import DashboardOverview, DashboardStats, User
from src.comeback.services.database.transformers import (
    transform_junction,
    transform_news_with_relations,
)
from src.comeback.services.rate_limiter import default_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

RECENT_ITEMS_LIMIT = 5
RECENT_RELEASES_DAYS = 30

T = TypeVar("T")


async def _or_default(label: str, awaitable: Awaitable[T], default: T) -> T:
    """Await one dashboard query, falling back to default when it fails."""
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"Dashboard query '{label}' failed: {e}", extra={"query": label})
        return default


async def _count_since(db: SupabaseQueryBuilder, table: str, since: datetime) -> int:
    response = await (
        db.client.table(table)
        .select("id", count="exact")
        .gte("created_at", since.isoformat())
        .execute()
    )
    return response.count or 0


@router.get("/overview", response_model=DashboardOverview)
@default_rate_limit
async def get_dashboard_overview(
    request: Request,
    admin: User = Depends(require_admin),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> DashboardOverview:
    """
    Totals and most recent items for the admin dashboard.

    All queries run concurrently. A failing query is logged and reported as
    zero (counters) or an empty list (recent items) so one broken table does
    not take the whole dashboard down.
    """
    since = datetime.now(UTC) - timedelta(days=RECENT_RELEASES_DAYS)

    (
        total_artists,
        active_artists,
        total_releases,
        recent_releases_count,
        total_news,
        companies,
        recent_artists,
        recent_releases,
        recent_news,
    ) = await asyncio.gather(
        _or_default("artists.count", db.count_records("artists"), 0),
        _or_default("artists.active", db.count_records("artists", {"active_career": True}), 0),
        _or_default("releases.count", db.count_records("releases"), 0),
        _or_default("releases.recent_count", _count_since(db, "releases", since), 0),
        _or_default("news.count", db.count_records("news"), 0),
        _or_default("companies", db.list_records("companies", columns="id, verified"), []),
        _or_default(
            "artists.recent",
            db.list_records("artists", order_by="created_at", limit=RECENT_ITEMS_LIMIT),
            [],
        ),
        _or_default(
            "releases.recent",
            db.list_records(
                "releases",
                columns="*, artists:artist_releases(artist:artists(*))",
                order_by="created_at",
                limit=RECENT_ITEMS_LIMIT,
            ),
            [],
        ),
        _or_default(
            "news.recent",
            db.list_records(
                "news",
                columns="*, artists:news_artists_junction(artist:artists(*))",
                order_by="created_at",
                limit=RECENT_ITEMS_LIMIT,
            ),
            [],
        ),
    )

    stats = DashboardStats(
        total_artists=total_artists,
        active_artists=active_artists,
        total_releases=total_releases,
        recent_releases=recent_releases_count,
        total_news=total_news,
        total_companies=len(companies),
        verified_companies=sum(1 for c in companies if c.get("verified")),
    )
    logger.info(f"Dashboard overview served to {admin.id}", extra=stats.model_dump())

    releases: list[dict[str, Any]] = [
        {**release, "artists": transform_junction(release.get("artists"), "artist")}
        for release in recent_releases
    ]

    return DashboardOverview(
        stats=stats,
        recent_artists=recent_artists,
        recent_releases=releases,
        recent_news=[transform_news_with_relations(n) for n in recent_news],
    )
