"""
Render a block-structured content document (``{"blocks": [...]}``) to HTML.

Supported blocks: paragraph, header, list (nested items allowed), image,
quote, code, embed, delimiter and raw. Unknown block types are skipped and
logged once per type. Inline HTML inside text fields is passed through as-is:
the source editor already stores sanitized inline markup.
"""

from __future__ import annotations

import html
from typing import Any, Callable, Dict, List, Optional

from migrator.core.logging import get_logger

logger = get_logger()

IMG_CLASS = "img"
FIGURE_CLASS = "image"
FIGCAPTION_CLASS = "figcaption"
PARAGRAPH_CLASS = "paragraph"
CODE_BLOCK_CLASS = "code-block"

_warned_types: set[str] = set()


def _attr(value: Any) -> str:
    return html.escape(str(value or ""), quote=True)


def _paragraph(data: Dict[str, Any]) -> str:
    return f'<p class="{PARAGRAPH_CLASS}">{data.get("text") or ""}</p>'


def _header(data: Dict[str, Any]) -> str:
    try:
        level = int(data.get("level") or 2)
    except (TypeError, ValueError):
        level = 2
    level = min(6, max(1, level))
    return f"<h{level}>{data.get('text') or ''}</h{level}>"


def _list_items(items: List[Any], tag: str) -> str:
    parts = []
    for item in items:
        if isinstance(item, dict):
            content = item.get("content") or ""
            nested = item.get("items") or []
            inner = _list_items(nested, tag) if nested else ""
            parts.append(f"<li>{content}{inner}</li>")
        else:
            parts.append(f"<li>{item}</li>")
    return f"<{tag}>{''.join(parts)}</{tag}>"


def _list(data: Dict[str, Any]) -> str:
    tag = "ol" if data.get("style") == "ordered" else "ul"
    return _list_items(data.get("items") or [], tag)


def _image(data: Dict[str, Any]) -> str:
    file_info = data.get("file") or {}
    url = file_info.get("url") or data.get("url")
    if not url:
        return ""
    caption = data.get("caption") or ""
    img = f'<img class="{IMG_CLASS}" src="{_attr(url)}" alt="{_attr(caption)}">'
    figcaption = f'<figcaption class="{FIGCAPTION_CLASS}">{caption}</figcaption>' if caption else ""
    return f'<figure class="{FIGURE_CLASS}">{img}{figcaption}</figure>'


def _quote(data: Dict[str, Any]) -> str:
    caption = data.get("caption") or ""
    cite = f"<cite>{caption}</cite>" if caption else ""
    return f"<blockquote>{data.get('text') or ''}{cite}</blockquote>"


def _code(data: Dict[str, Any]) -> str:
    return f'<pre class="{CODE_BLOCK_CLASS}"><code>{html.escape(data.get("code") or "")}</code></pre>'


def _embed(data: Dict[str, Any]) -> str:
    src = data.get("embed") or data.get("source")
    if not src:
        return ""
    caption = data.get("caption") or ""
    frame = f'<iframe src="{_attr(src)}" frameborder="0" allowfullscreen></iframe>'
    figcaption = f'<figcaption class="{FIGCAPTION_CLASS}">{caption}</figcaption>' if caption else ""
    return f"<figure>{frame}{figcaption}</figure>"


def _delimiter(_: Dict[str, Any]) -> str:
    return "<hr>"


def _raw(data: Dict[str, Any]) -> str:
    return str(data.get("html") or "")


_RENDERERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "paragraph": _paragraph,
    "header": _header,
    "list": _list,
    "image": _image,
    "quote": _quote,
    "code": _code,
    "embed": _embed,
    "delimiter": _delimiter,
    "raw": _raw,
}


def render_blocks(document: Optional[Dict[str, Any]]) -> str:
    if not isinstance(document, dict):
        return ""
    out: List[str] = []
    for block in document.get("blocks") or []:
        if not isinstance(block, dict):
            continue
        block_type = str(block.get("type") or "")
        renderer = _RENDERERS.get(block_type)
        if renderer is None:
            if block_type not in _warned_types:
                _warned_types.add(block_type)
                logger.warning("editorjs_block_unsupported", block_type=block_type)
            continue
        rendered = renderer(block.get("data") or {})
        if rendered:
            out.append(rendered)
    return "".join(out)
