"""Pydantic models for database entities."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserRole(str, Enum):
    """Application roles stored on the users table."""

    USER = "USER"
    CONTRIBUTOR = "CONTRIBUTOR"
    ADMIN = "ADMIN"


class User(BaseModel):
    """Application user record, keyed by the identity provider's user id."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    name: str = ""
    photo_url: str = ""
    role: UserRole = UserRole.USER
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("email", "name", "photo_url", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value: Any) -> Any:
        # rows created before roles existed have a null role
        return value or UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class DashboardStats(BaseModel):
    """Aggregated counters shown on the admin dashboard."""

    total_artists: int = 0
    active_artists: int = 0
    total_releases: int = 0
    recent_releases: int = Field(0, description="Releases created in the last 30 days")
    total_news: int = 0
    total_companies: int = 0
    verified_companies: int = 0


class DashboardOverview(BaseModel):
    """Response model for the dashboard overview endpoint."""

    stats: DashboardStats
    recent_artists: list[dict[str, Any]] = []
    recent_releases: list[dict[str, Any]] = []
    recent_news: list[dict[str, Any]] = []


class PaginatedReleases(BaseModel):
    """Paginated releases with their artists, musics and platform links."""

    releases: list[dict[str, Any]]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total_pages: int = Field(ge=0)


class CleanupStats(BaseModel):
    """Counters reported by the orphan music cleanup."""

    total_musics: int = 0
    linked_musics: int = 0
    orphan_musics: int = 0
    deleted: int = 0


class CleanupResponse(BaseModel):
    """Response model for the orphan music cleanup endpoint."""

    success: bool = True
    dry_run: bool = False
    message: str
    stats: CleanupStats
    orphan_musics: list[dict[str, Any]] = []


class CompleteArtist(BaseModel):
    """An artist with groups, members, releases and companies, plus links and sample musics."""

    artist: dict[str, Any]
    social_links: list[dict[str, Any]] = []
    platform_links: list[dict[str, Any]] = []
    random_musics: list[dict[str, Any]] = []


class CompleteRelease(BaseModel):
    """A release with its artists and musics, plus releases by the same artists."""

    release: dict[str, Any]
    suggested_releases: list[dict[str, Any]] = []


class CompleteCompany(BaseModel):
    """A company with its artist links, current ones first."""

    company: dict[str, Any]
    company_artists: list[dict[str, Any]] = []


class PaginatedMusics(BaseModel):
    """Paginated musics with their artists and releases."""

    musics: list[dict[str, Any]]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total_pages: int = Field(ge=0)


class DeleteResponse(BaseModel):
    success: bool = True
