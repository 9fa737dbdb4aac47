"""
Story → destination routing.

Rules, in order, for one legacy story with its resolved author and brand:

1. unresolved editor, or no brand/category mapping → skip
2. excluded (brand slug, author name) pair → skip
3. infographic brand and at least one image → Infographic
4. content document → Column for the column brand's listed authors, else Article
5. otherwise a probed video → Short when 9:16, else VideoArticle
6. otherwise nothing

Rule 3 does not stop evaluation; an infographic story with content can also
become an Article when its brand exists in the destination.

:func:`classify` is pure. Everything it needs from the network (video facts,
shortened title, column writer) is gathered beforehand into
:class:`Enrichment` by the driver, guided by :func:`needs_short_title`,
:func:`needs_video` and :func:`routes_to_column`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from migrator.models.destination_payloads import (
    Article,
    Column,
    DestinationPayload,
    Infographic,
    Short,
    VideoArticle,
)
from migrator.models.editorial_rules import EditorialRules
from migrator.models.enrichment import VideoMeta
from migrator.models.reference_data import Brand, Editor, ResolvedAuthor, Writer
from migrator.models.source_records import SourceRecord
from pipeline.editorjs_markup import render_blocks
from pipeline.errors import EnrichmentFailure, ResolutionGap
from pipeline.text_normalization import build_slug, clean_title, generate_payload_id

SKIP_EDITOR_OR_BRAND_MISSING = "editor or brand missing"
SKIP_EDITORIAL_EXCLUSION = "editorial exclusion"


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class Enrichment:
    video: Optional[VideoMeta] = None
    short_title: Optional[str] = None
    writer: Optional[Writer] = None


@dataclass(frozen=True)
class TitlePolicy:
    max_length: int = 60
    slug_max_length: int = 80


Classification = Union[Skip, List[DestinationPayload]]


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def skip_reason(
    author: Optional[ResolvedAuthor],
    brand: Optional[Brand],
    rules: EditorialRules,
) -> Optional[str]:
    if author is None or not author.is_resolved or brand is None:
        return SKIP_EDITOR_OR_BRAND_MISSING
    if rules.is_excluded(brand.slug, author.full_name):
        return SKIP_EDITORIAL_EXCLUSION
    return None


def require_references(
    record: SourceRecord,
    author: Optional[ResolvedAuthor],
    brand: Optional[Brand],
    rules: EditorialRules,
) -> Tuple[ResolvedAuthor, Editor, Brand]:
    """Resolved author, its destination editor and the brand; :class:`ResolutionGap` otherwise."""
    reason = skip_reason(author, brand, rules)
    if reason is not None:
        raise ResolutionGap(reason, story_id=record.id)
    if author is None or author.editor is None or brand is None:
        raise ResolutionGap(SKIP_EDITOR_OR_BRAND_MISSING, story_id=record.id)
    return author, author.editor, brand


def needs_short_title(record: SourceRecord, policy: TitlePolicy) -> bool:
    return len(clean_title(record.raw_title)) > policy.max_length


def needs_video(record: SourceRecord, brand: Brand) -> bool:
    return brand.id is not None and not record.has_content and record.video is not None


def routes_to_column(record: SourceRecord, author: ResolvedAuthor, brand: Brand, rules: EditorialRules) -> bool:
    return (
        record.has_content
        and brand.id is not None
        and brand.slug == rules.column_brand_slug
        and rules.is_column_author(author.full_name)
    )


def emits_payload(record: SourceRecord, brand: Brand, rules: EditorialRules, video: Optional[VideoMeta]) -> bool:
    if brand.slug == rules.infographic_slug and record.images:
        return True
    if brand.id is None:
        return False
    return record.has_content or (record.video is not None and video is not None)


def display_title(record: SourceRecord, short_title: Optional[str], policy: TitlePolicy) -> str:
    cleaned = clean_title(record.raw_title)
    if len(cleaned) <= policy.max_length:
        return cleaned
    if not short_title:
        raise EnrichmentFailure("title_shortener", f"story {record.id} needs a short title")
    return clean_title(short_title)


def _image_thumbnails(url: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    if not url:
        return None
    return {"original": url, "3x2": url, "4x3": url, "9x16": url}


def classify(
    record: SourceRecord,
    author: Optional[ResolvedAuthor],
    brand: Optional[Brand],
    *,
    rules: EditorialRules,
    enrichment: Enrichment = Enrichment(),
    policy: TitlePolicy = TitlePolicy(),
    id_factory: Callable[[], str] = generate_payload_id,
) -> Classification:
    try:
        author, editor, brand = require_references(record, author, brand, rules)
    except ResolutionGap as gap:
        return Skip(gap.reason)

    title = display_title(record, enrichment.short_title, policy)
    list_title = clean_title(enrichment.short_title) if enrichment.short_title else title
    editor_id = editor.id

    def _common(payload_id: str) -> Dict[str, object]:
        return {
            "id": payload_id,
            "slug": build_slug(
                record.slug,
                clean_title(record.raw_title),
                enrichment.short_title,
                payload_id=payload_id,
                max_length=policy.slug_max_length,
            ),
            "title": title,
            "description": record.message,
            "brand_id": brand.id,
            "seo": record.seo,
            "import_id": record.import_key,
            "created_at": _utc(record.created_at),
            "updated_at": _utc(record.updated_at),
        }

    payloads: List[DestinationPayload] = []

    if brand.slug == rules.infographic_slug and record.images:
        payloads.append(
            Infographic(
                **_common(id_factory()),
                images=[image.url for image in record.images],
                number_of_views=record.stat_views,
                published_at=_utc(record.published_at),
                created_by=editor_id,
            )
        )

    if brand.id is None:
        return payloads

    if record.has_content:
        content = render_blocks(record.content_data)
        thumbnails = _image_thumbnails(record.first_image_url)
        if routes_to_column(record, author, brand, rules):
            payloads.append(
                Column(
                    **_common(id_factory()),
                    content=content,
                    writer_id=enrichment.writer.id if enrichment.writer else None,
                    thumbnails=thumbnails,
                    number_of_view=record.stat_views,
                )
            )
        else:
            payloads.append(
                Article(
                    **_common(id_factory()),
                    content=content,
                    list_title=list_title,
                    thumbnails=thumbnails,
                    is_premium=record.premium,
                    number_of_views=record.stat_views,
                    published_at=_utc(record.published_at),
                    created_by=editor_id,
                )
            )
        return payloads

    video = enrichment.video
    if record.video is not None and video is not None:
        thumbnail = video.thumbnail or record.first_image_url
        if video.is_narrow:
            payloads.append(
                Short(
                    **_common(id_factory()),
                    url=video.url,
                    thumbnails={"original": thumbnail, "9x16": thumbnail} if thumbnail else None,
                    number_of_views=record.stat_views,
                    created_by=editor_id,
                )
            )
        else:
            payloads.append(
                VideoArticle(
                    **_common(id_factory()),
                    video=video.url,
                    aspect_ratio=video.ratio,
                    list_title=list_title,
                    thumbnails=_image_thumbnails(thumbnail),
                    is_premium=record.premium,
                    number_of_views=record.stat_views,
                    published_at=_utc(record.published_at),
                    created_by=editor_id,
                )
            )

    return payloads
