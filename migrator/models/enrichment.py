from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


NARROW_RATIO = "9:16"


class VideoMeta(BaseModel):
    """Probed video facts for one story; ``ratio`` is reduced, e.g. "16:9"."""

    id: str
    title: Optional[str] = None
    url: str
    thumbnail: Optional[str] = None
    ratio: str

    @property
    def is_narrow(self) -> bool:
        return self.ratio == NARROW_RATIO


class TitleMeta(BaseModel):
    """Original title and the shortened one used in lists."""

    id: str
    title: str
    list_title: str


class EnrichmentDocument(BaseModel):
    """On-disk shape of the enrichment cache (one JSON document)."""

    ratios: List[VideoMeta] = Field(default_factory=list)
    news: List[TitleMeta] = Field(default_factory=list)
