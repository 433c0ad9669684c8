"""API handlers for admin maintenance tasks."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from postgrest.exceptions import APIError

from src.comeback.services.auth.dependencies import require_admin
from src.comeback.services.database import SupabaseQueryBuilder, get_db
from src.comeback.services.database.errors import handle_supabase_error
from src.comeback.services.database.models import CleanupResponse, CleanupStats, User
from src.comeback.services.rate_limiter import admin_maintenance_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

# Orphans listed in a dry-run preview
DRY_RUN_PREVIEW_LIMIT = 20


@router.post("/cleanup-orphan-musics", response_model=CleanupResponse)
@admin_maintenance_rate_limit
async def cleanup_orphan_musics(
    request: Request,
    dry_run: bool = Query(False, description="Report orphans without deleting them"),
    admin: User = Depends(require_admin),
    db: SupabaseQueryBuilder = Depends(get_db),
) -> CleanupResponse:
    """
    Delete musics that no release references.

    Both tables are read in full, page by page, so a row cap on the server
    never makes a linked music look orphaned.

    Their music_artists links are removed first. With dry_run, nothing is
    deleted and the first orphans are returned for review.

    Raises:
        HTTPException: Mapped status of a database error
    """
    try:
        musics = await db.list_all("musics", columns="id, name")
        links = await db.list_all(
            "music_releases", columns="music_id", order_by=("music_id", "release_id")
        )
    except APIError as e:
        raise handle_supabase_error(e, "admin.cleanup_orphan_musics") from e

    linked_ids = {link["music_id"] for link in links}
    orphans = [m for m in musics if m["id"] not in linked_ids]
    stats = CleanupStats(
        total_musics=len(musics),
        linked_musics=len(linked_ids),
        orphan_musics=len(orphans),
    )

    if not orphans:
        return CleanupResponse(message="No orphan musics to delete", stats=stats)

    if dry_run:
        return CleanupResponse(
            dry_run=True,
            message=f"{len(orphans)} orphan musics found (dry run)",
            stats=stats,
            orphan_musics=orphans[:DRY_RUN_PREVIEW_LIMIT],
        )

    orphan_ids = [m["id"] for m in orphans]
    try:
        await db.delete_where_in("music_artists", "music_id", orphan_ids)
    except APIError as e:
        # a leftover link makes the musics delete below fail and report it
        logger.error(f"Failed to delete music_artists links: {e}", exc_info=True)

    try:
        await db.delete_where_in("musics", "id", orphan_ids)
    except APIError as e:
        raise handle_supabase_error(e, "admin.cleanup_orphan_musics") from e

    stats.deleted = len(orphan_ids)
    logger.info(
        f"Deleted {len(orphan_ids)} orphan musics",
        extra={"admin_id": admin.id, "deleted": len(orphan_ids)},
    )
    return CleanupResponse(message=f"{len(orphan_ids)} orphan musics deleted", stats=stats)
