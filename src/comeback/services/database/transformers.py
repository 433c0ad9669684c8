"""Flatten junction-table joins into nested objects."""

from typing import Any


def transform_junction(rows: list[dict[str, Any]] | None, key: str) -> list[dict[str, Any]]:
    """
    Extract the related entity from each junction row.

    Args:
        rows: Junction rows, e.g. [{"artist": {...}}, {"artist": None}]
        key: Key holding the related entity in each row

    Returns:
        The related entities, with null entries dropped

    Example:
        >>> transform_junction([{"artist": {"id": "1"}}, {"artist": None}], "artist")
        [{'id': '1'}]
    """
    if not rows:
        return []
    return [row[key] for row in rows if row.get(key)]


def transform_release_with_relations(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a release row selected with its artist and music junctions."""
    release = dict(raw)
    release["artists"] = transform_junction(raw.get("artists"), "artist")
    release["musics"] = transform_junction(raw.get("musics"), "music")
    release["platform_links"] = raw.get("platform_links") or []
    return release


def transform_news_with_relations(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a news row selected with its artist junction."""
    news = dict(raw)
    news["artists"] = transform_junction(raw.get("artists"), "artist")
    return news


def transform_music_with_relations(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a music row selected with its artist and release junctions."""
    music = dict(raw)
    music["artists"] = transform_junction(raw.get("artists"), "artist")
    music["releases"] = transform_junction(raw.get("releases"), "release")
    return music
