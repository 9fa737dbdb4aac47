"""
Typed views over rows read from the legacy (source) store.

Rows come back from asyncpg as records with jsonb columns still encoded as
text; the ``from_row`` constructors decode them once so the rest of the
pipeline works with plain Python values. Instances are frozen: the pipeline
never mutates what it read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple


def _decode_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            return None
    return value


@dataclass(frozen=True)
class VideoDescriptor:
    """Video attached to a story: original upload URL and/or HLS playlist."""

    url: Optional[str]
    playlist_url: Optional[str]
    thumbnail_url: Optional[str] = None

    @property
    def probe_urls(self) -> Tuple[str, ...]:
        """Playlist first, then the uploaded file."""
        return tuple(u for u in (self.playlist_url, self.url) if u)

    @classmethod
    def from_value(cls, value: Any) -> Optional["VideoDescriptor"]:
        data = _decode_json(value)
        if not isinstance(data, dict):
            return None
        url = data.get("url") or data.get("source") or data.get("original")
        playlist = data.get("playlist") or data.get("playlist_url") or data.get("hls")
        if not url and not playlist:
            return None
        return cls(
            url=str(url) if url else None,
            playlist_url=str(playlist) if playlist else None,
            thumbnail_url=data.get("thumbnail") or data.get("thumbnail_url"),
        )


@dataclass(frozen=True)
class SourceImage:
    url: str
    caption: Optional[str] = None


@dataclass(frozen=True)
class SourceRecord:
    """One legacy ``story`` row."""

    id: int
    title: Optional[str]
    message: Optional[str]
    content_data: Optional[Dict[str, Any]]
    video: Optional[VideoDescriptor]
    images: Tuple[SourceImage, ...]
    brand_id: Optional[int]
    category_id: Optional[int]
    author_id: Optional[int]
    published_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    premium: bool = False
    stat_views: int = 0
    seo: Optional[Dict[str, Any]] = None
    slug: Optional[str] = None

    @property
    def import_key(self) -> str:
        return str(self.id)

    @property
    def raw_title(self) -> str:
        return (self.title or self.message or "").strip()

    @property
    def has_content(self) -> bool:
        return isinstance(self.content_data, dict)

    @property
    def first_image_url(self) -> Optional[str]:
        return self.images[0].url if self.images else None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SourceRecord":
        images_raw = _decode_json(row.get("images")) or []
        images = tuple(
            SourceImage(url=str(item["url"]), caption=item.get("caption"))
            for item in images_raw
            if isinstance(item, dict) and item.get("url")
        )
        content = _decode_json(row.get("content_data"))
        seo = _decode_json(row.get("seo"))
        return cls(
            id=int(row["id"]),
            title=row.get("title"),
            message=row.get("message"),
            content_data=content if isinstance(content, dict) else None,
            video=VideoDescriptor.from_value(row.get("video")),
            images=images,
            brand_id=row.get("brand_id"),
            category_id=row.get("category_id"),
            author_id=row.get("author_id"),
            published_at=row.get("published_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            premium=bool(row.get("premium") or False),
            stat_views=int(row.get("stat_views") or 0),
            seo=seo if isinstance(seo, dict) else None,
            slug=row.get("slug"),
        )


@dataclass(frozen=True)
class LegacyAuthor:
    """Source ``author`` joined with its ``user`` profile."""

    id: int
    full_name: str
    email: Optional[str]
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def contact_email(self) -> Optional[str]:
        return self.email or self.user.get("email")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LegacyAuthor":
        user = _decode_json(row.get("user")) or {}
        return cls(
            id=int(row["id"]),
            full_name=(row.get("full_name") or "").strip(),
            email=row.get("email"),
            user=user if isinstance(user, dict) else {},
        )
