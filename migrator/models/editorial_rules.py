"""
Editorial routing rules loader.

Parses configs/editorial_rules.yml into a frozen EditorialRules value: which
brand slug is the "column" brand, which authors write columns, which slug
marks infographics, and which (brand, author) pairs are never migrated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, FrozenSet, Tuple

import yaml

from migrator.core.logging import get_logger

logger = get_logger()

DEFAULT_COLUMN_BRAND_SLUG = "yakin-plan"
DEFAULT_INFOGRAPHIC_SLUG = "infografik"


def _name_key(value: str) -> str:
    return " ".join((value or "").split()).casefold()


@dataclass(frozen=True)
class EditorialRules:
    column_brand_slug: str = DEFAULT_COLUMN_BRAND_SLUG
    infographic_slug: str = DEFAULT_INFOGRAPHIC_SLUG
    column_authors: FrozenSet[str] = field(default_factory=frozenset)
    excluded_pairs: FrozenSet[Tuple[str, str]] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        *,
        column_brand_slug: str = DEFAULT_COLUMN_BRAND_SLUG,
        infographic_slug: str = DEFAULT_INFOGRAPHIC_SLUG,
        column_authors: Tuple[str, ...] = (),
        excluded_pairs: Tuple[Tuple[str, str], ...] = (),
    ) -> "EditorialRules":
        return cls(
            column_brand_slug=column_brand_slug,
            infographic_slug=infographic_slug,
            column_authors=frozenset(_name_key(name) for name in column_authors if name),
            excluded_pairs=frozenset((slug, _name_key(name)) for slug, name in excluded_pairs),
        )

    def is_column_author(self, full_name: str) -> bool:
        return _name_key(full_name) in self.column_authors

    def is_excluded(self, brand_slug: str, full_name: str) -> bool:
        return (brand_slug, _name_key(full_name)) in self.excluded_pairs


def _parse_excluded(raw: Any) -> Tuple[Tuple[str, str], ...]:
    pairs = []
    for item in raw or []:
        if not isinstance(item, dict):
            logger.warning("editorial_rules_invalid_exclusion", entry=str(item))
            continue
        slug = str(item.get("brand_slug") or "").strip()
        name = str(item.get("author_name") or "").strip()
        if slug and name:
            pairs.append((slug, name))
    return tuple(pairs)


@lru_cache(maxsize=8)
def load_editorial_rules(path: str) -> EditorialRules:
    rules_path = Path(path)
    if not rules_path.exists():
        logger.warning("editorial_rules_missing", path=str(rules_path))
        return EditorialRules.build()

    with rules_path.open("r", encoding="utf-8") as fh:
        data: Dict[str, Any] = yaml.safe_load(fh) or {}

    columns = data.get("columns") or {}
    rules = EditorialRules.build(
        column_brand_slug=str(columns.get("brand_slug") or DEFAULT_COLUMN_BRAND_SLUG),
        infographic_slug=str(data.get("infographic_slug") or DEFAULT_INFOGRAPHIC_SLUG),
        column_authors=tuple(str(name) for name in columns.get("authors") or []),
        excluded_pairs=_parse_excluded(data.get("excluded")),
    )
    logger.info(
        "editorial_rules_loaded",
        path=str(rules_path),
        column_authors=len(rules.column_authors),
        excluded_pairs=len(rules.excluded_pairs),
    )
    return rules


def clear_editorial_rules_cache() -> None:
    load_editorial_rules.cache_clear()
