from __future__ import annotations

import secrets
import unicodedata
from typing import Optional

# Characters that ride along with pictographs (ZWJ, variation selectors, keycap).
_EMOJI_JOINERS = {"\u200d", "\ufe0e", "\ufe0f", "\u20e3"}

# Emoji blocks; skin tone modifiers and regional indicators sit inside 0x1F000-0x1FAFF.
_PICTOGRAPH_RANGES = (
    (0x231A, 0x231B),
    (0x23E9, 0x23FA),
    (0x2600, 0x27BF),
    (0x2B00, 0x2BFF),
    (0x1F000, 0x1FAFF),
    (0xE0020, 0xE007F),
)

_TURKISH_ASCII = str.maketrans({"ı": "i", "İ": "i", "ş": "s", "Ş": "s", "ğ": "g", "Ğ": "g"})


def _is_pictographic(ch: str) -> bool:
    if ch in _EMOJI_JOINERS:
        return True
    code = ord(ch)
    return any(low <= code <= high for low, high in _PICTOGRAPH_RANGES)


def strip_pictographs(value: str) -> str:
    """Remove pictographic symbols (and surrounding whitespace) from both ends."""
    start, end = 0, len(value)
    while start < end and (value[start].isspace() or _is_pictographic(value[start])):
        start += 1
    while end > start and (value[end - 1].isspace() or _is_pictographic(value[end - 1])):
        end -= 1
    return value[start:end]


def clean_title(title: Optional[str]) -> str:
    """
    Strip leading/trailing pictographs and whitespace, then a single trailing period.
    "🔴 Son dakika." -> "Son dakika"; "Devam ediyor..." -> "Devam ediyor.."
    """
    if not title:
        return ""
    trimmed = strip_pictographs(title)
    if trimmed.endswith("."):
        trimmed = trimmed[:-1].rstrip()
    return trimmed


def slugify(value: Optional[str], *, max_length: Optional[int] = None) -> str:
    """
    Lowercase URL-safe token: ascii letters/digits separated by single hyphens.
    Turkish letters are transliterated before accents are stripped.
    """
    if not value:
        return ""
    text = value.translate(_TURKISH_ASCII)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.lower()
    out = []
    for ch in text:
        if ("a" <= ch <= "z") or ("0" <= ch <= "9"):
            out.append(ch)
        elif out and out[-1] != "-":
            out.append("-")
    slug = "".join(out).strip("-")
    if max_length is not None and len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    return slug


def generate_payload_id() -> str:
    """16 lowercase hex chars; also used as the slug suffix."""
    return secrets.token_hex(8)


def build_slug(*candidates: Optional[str], payload_id: str, max_length: int = 80) -> str:
    """
    Slug from the first candidate text that yields anything, capped so that
    ``<base>-<payload_id>`` fits in ``max_length``; always suffixed with the id.
    """
    budget = max(0, max_length - len(payload_id) - 1)
    for text in candidates:
        base = slugify(text, max_length=budget)
        if base:
            return f"{base}-{payload_id}"
    return payload_id
