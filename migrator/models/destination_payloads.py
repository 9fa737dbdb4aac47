"""
Destination row shapes.

Each content type the migration can produce is its own pydantic model with a
literal ``kind`` tag, and :data:`DestinationPayload` is the closed union over
them. The writer dispatches on ``kind``; nothing else inspects optional
fields to guess what a payload is.

``to_row`` produces the column → value mapping used for the dynamic INSERT:
JSON columns are serialized to text (asyncpg sends ``json``/``jsonb`` as
text) and a few tables use camelCase timestamp columns.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class _PayloadBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    TABLE: ClassVar[str] = ""
    # (relation table, foreign-key column) when the row carries an authorship relation
    AUTHOR_RELATION: ClassVar[Optional[Tuple[str, str]]] = None
    JSON_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"seo", "thumbnails"})
    COLUMN_NAMES: ClassVar[Mapping[str, str]] = {}
    NON_COLUMNS: ClassVar[FrozenSet[str]] = frozenset({"kind"})

    id: str
    slug: str
    title: str
    description: Optional[str] = None
    brand_id: Optional[str] = None
    seo: Optional[Dict[str, Any]] = None
    status: str = "published"
    import_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def author_editor_id(self) -> Optional[str]:
        return None

    def to_row(self) -> Dict[str, Any]:
        data = self.model_dump(exclude=set(self.NON_COLUMNS))
        row: Dict[str, Any] = {}
        for key, value in data.items():
            if key in self.JSON_FIELDS and value is not None:
                value = json.dumps(value, ensure_ascii=False, default=str)
            row[self.COLUMN_NAMES.get(key, key)] = value
        return row


class Article(_PayloadBase):
    TABLE: ClassVar[str] = "news"
    AUTHOR_RELATION: ClassVar[Optional[Tuple[str, str]]] = ("news_writers_pivot", "news_id")

    kind: Literal["article"] = "article"
    content: str
    list_title: Optional[str] = None
    thumbnails: Optional[Dict[str, Optional[str]]] = None
    is_premium: bool = False
    number_of_views: int = 0
    published_at: Optional[datetime] = None
    created_by: str

    @property
    def author_editor_id(self) -> Optional[str]:
        return self.created_by


class VideoArticle(_PayloadBase):
    TABLE: ClassVar[str] = "video_news"
    AUTHOR_RELATION: ClassVar[Optional[Tuple[str, str]]] = ("video_news_writers_pivot", "video_news_id")

    kind: Literal["video_article"] = "video_article"
    video: str
    aspect_ratio: Optional[str] = None
    list_title: Optional[str] = None
    thumbnails: Optional[Dict[str, Optional[str]]] = None
    is_premium: bool = False
    number_of_views: int = 0
    published_at: Optional[datetime] = None
    created_by: str

    @property
    def author_editor_id(self) -> Optional[str]:
        return self.created_by


class Short(_PayloadBase):
    TABLE: ClassVar[str] = "shorts"

    kind: Literal["short"] = "short"
    url: str
    thumbnails: Optional[Dict[str, Optional[str]]] = None
    number_of_views: int = 0
    created_by: Optional[str] = None


class Column(_PayloadBase):
    TABLE: ClassVar[str] = "columns"
    COLUMN_NAMES: ClassVar[Mapping[str, str]] = {"created_at": "createdAt", "updated_at": "updatedAt"}

    kind: Literal["column"] = "column"
    content: str
    is_active: bool = True
    writer_id: Optional[str] = None
    thumbnails: Optional[Dict[str, Optional[str]]] = None
    number_of_view: int = 0


class Infographic(_PayloadBase):
    TABLE: ClassVar[str] = "infographics"
    JSON_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"seo", "images"})

    kind: Literal["infographic"] = "infographic"
    images: List[str]
    number_of_views: int = 0
    published_at: Optional[datetime] = None
    created_by: Optional[str] = None


DestinationPayload = Annotated[
    Union[Article, VideoArticle, Short, Column, Infographic],
    Field(discriminator="kind"),
]

PAYLOAD_TYPES: Tuple[type, ...] = (Article, VideoArticle, Short, Column, Infographic)
