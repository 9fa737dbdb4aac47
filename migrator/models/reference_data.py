from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class Editor:
    id: str
    full_name: str
    email: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Editor":
        return cls(
            id=str(row["id"]),
            full_name=(row.get("fullname") or row.get("full_name") or "").strip(),
            email=row.get("email"),
        )


@dataclass(frozen=True)
class Writer:
    id: str
    full_name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Writer":
        return cls(
            id=str(row["id"]),
            full_name=(row.get("fullname") or row.get("full_name") or row.get("name") or "").strip(),
        )


@dataclass(frozen=True)
class Brand:
    """Destination brand; ``id`` is None only for the infographic pseudo-brand."""

    id: Optional[str]
    slug: str
    name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Brand":
        return cls(id=str(row["id"]), slug=str(row["slug"]), name=str(row.get("name") or row["slug"]))


@dataclass(frozen=True)
class ResolvedAuthor:
    """A legacy author and the destination editor it maps to (None = unresolved)."""

    author_id: int
    full_name: str
    editor: Optional[Editor]

    @property
    def is_resolved(self) -> bool:
        return self.editor is not None


@dataclass(frozen=True)
class LegacyTaxonomyEntry:
    """One entry of the brands.json / categories.json export with its hand-filled slug."""

    id: int
    slug: Optional[str]
    name: str
    mapped: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["LegacyTaxonomyEntry"]:
        mapped = (data.get("mapped") or "").strip()
        if not mapped or data.get("id") is None:
            return None
        return cls(
            id=int(data["id"]),
            slug=data.get("slug"),
            name=str(data.get("name") or ""),
            mapped=mapped,
        )
