"""
Video dimensions for one story.

The probe URL is either an HLS master playlist (the highest-bandwidth
variant's ``RESOLUTION`` wins) or the uploaded media file itself, in which
case the ISO-BMFF box tree is walked with ranged reads until the ``tkhd`` of
the first visual track is found. Rotated tracks report their display size.
"""

from __future__ import annotations

import asyncio
import re
import struct
from dataclasses import dataclass
from math import gcd
from typing import Awaitable, Callable, Iterator, List, Optional, Tuple, TypeVar
from urllib.parse import urljoin

import httpx

from migrator.core.logging import get_logger

logger = get_logger()

_RESOLUTION_RE = re.compile(r"RESOLUTION=(\d+)x(\d+)", re.IGNORECASE)
_BANDWIDTH_RE = re.compile(r"[^-]BANDWIDTH=(\d+)", re.IGNORECASE)

HEAD_BYTES = 1024 * 1024
MAX_MOOV_BYTES = 32 * 1024 * 1024
MAX_TOP_LEVEL_BOXES = 64

T = TypeVar("T")
class VideoNotFound(Exception):
    """The video source answered 404."""


@dataclass(frozen=True)
class ProbeResult:
    width: int
    height: int
    thumbnail_url: Optional[str] = None

    @property
    def ratio(self) -> str:
        return simplify_ratio(self.width, self.height)


def simplify_ratio(width: int, height: int) -> str:
    """1920x1080 -> "16:9", 1080x1920 -> "9:16"."""
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid video dimensions {width}x{height}")
    divisor = gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


def parse_master_playlist(text: str) -> List[Tuple[int, int, int]]:
    """(bandwidth, width, height) for each variant stream in an HLS master playlist."""
    variants = []
    for line in text.splitlines():
        if not line.startswith("#EXT-X-STREAM-INF"):
            continue
        res = _RESOLUTION_RE.search(line)
        if not res:
            continue
        bw = _BANDWIDTH_RE.search(line)
        variants.append((int(bw.group(1)) if bw else 0, int(res.group(1)), int(res.group(2))))
    return variants


def default_thumbnail_url(playlist_url: str) -> str:
    return urljoin(playlist_url, "thumbnail.jpg")


def is_playlist(head: bytes) -> bool:
    return head.lstrip(b"\xef\xbb\xbf \t\r\n").startswith(b"#EXTM3U")


def read_box_header(data: bytes, pos: int = 0) -> Optional[Tuple[Optional[int], bytes, int]]:
    """(size, type, header length) of the box at ``pos``; size None means "to end of file"."""
    if pos + 8 > len(data):
        return None
    size, box_type = struct.unpack_from(">I4s", data, pos)
    header_len = 8
    if size == 1:
        if pos + 16 > len(data):
            return None
        (size,) = struct.unpack_from(">Q", data, pos + 8)
        header_len = 16
    elif size == 0:
        return None, box_type, header_len
    if size < header_len:
        raise ValueError(f"corrupt {box_type!r} box of size {size}")
    return size, box_type, header_len


def iter_boxes(data: bytes) -> Iterator[Tuple[bytes, bytes]]:
    pos = 0
    while True:
        header = read_box_header(data, pos)
        if header is None:
            return
        size, box_type, header_len = header
        end = len(data) if size is None else pos + size
        if end > len(data):
            return
        yield box_type, data[pos + header_len:end]
        pos = end


def tkhd_dimensions(body: bytes) -> Optional[Tuple[int, int]]:
    """Display width/height from a track header; None for non-visual tracks."""
    if not body:
        return None
    matrix_at = 52 if body[0] == 1 else 40
    if len(body) < matrix_at + 44:
        return None
    a, b, _, c, d = struct.unpack_from(">5i", body, matrix_at)
    width, height = struct.unpack_from(">II", body, matrix_at + 36)
    width >>= 16
    height >>= 16
    if not width or not height:
        return None
    # 90/270 degree rotation
    if a == 0 and d == 0 and (b or c):
        width, height = height, width
    return width, height


def mp4_dimensions(moov_body: bytes) -> Optional[Tuple[int, int]]:
    for box_type, trak in iter_boxes(moov_body):
        if box_type != b"trak":
            continue
        for child_type, child in iter_boxes(trak):
            if child_type == b"tkhd":
                dims = tkhd_dimensions(child)
                if dims:
                    return dims
    return None


class VideoProbeService:
    """
    Reports the resolution of a video from its HLS master playlist or from
    the media file itself. A 404 is reported as :class:`VideoNotFound`;
    other HTTP failures are retried and then raised.
    """

    def __init__(
        self,
        *,
        user_agent: str = "story-migrator/1.0",
        timeout_s: float = 20.0,
        max_concurrency: int = 16,
        max_retries: int = 2,
        head_bytes: int = HEAD_BYTES,
    ) -> None:
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.head_bytes = max(16, head_bytes)
        self._client: Optional[httpx.AsyncClient] = None
        self._sem = asyncio.Semaphore(max(1, max_concurrency))

    async def __aenter__(self) -> "VideoProbeService":
        self._client = httpx.AsyncClient(
            timeout=self.timeout_s,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()

    async def _with_retries(self, url: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        delay = 1.0
        last_exc: Optional[Exception] = None
        while attempt <= self.max_retries:
            try:
                return await call()
            except VideoNotFound:
                raise
            except httpx.HTTPError as exc:
                last_exc = exc
                attempt += 1
                if attempt > self.max_retries:
                    break
                logger.debug("video_probe_retry", url=url, attempt=attempt, error=str(exc))
                await asyncio.sleep(delay)
                delay = min(delay * 2, 10)

        raise last_exc or RuntimeError(f"no attempt made for {url}")

    async def _read_range(self, url: str, start: int, length: int) -> bytes:
        """Bytes ``[start, start + length)``; servers that ignore ``Range`` are read and sliced."""
        if self._client is None:
            raise RuntimeError("VideoProbeService HTTP client not initialized")
        client = self._client

        async def _once() -> bytes:
            headers = {"Range": f"bytes={start}-{start + length - 1}"}
            async with self._sem:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.status_code == 404:
                        raise VideoNotFound(url)
                    if response.status_code == 416:
                        return b""
                    response.raise_for_status()
                    skip = 0 if response.status_code == 206 else start
                    buf = bytearray()
                    async for chunk in response.aiter_bytes():
                        buf.extend(chunk)
                        if len(buf) >= skip + length:
                            break
            return bytes(buf[skip:skip + length])

        return await self._with_retries(url, _once)

    def _from_playlist(self, url: str, head: bytes) -> ProbeResult:
        variants = parse_master_playlist(head.decode("utf-8", errors="replace"))
        if not variants:
            raise ValueError(f"no video variant with a resolution in {url}")
        _, width, height = max(variants)
        return ProbeResult(width=width, height=height, thumbnail_url=default_thumbnail_url(url))

    async def _from_media_file(self, url: str, head: bytes) -> ProbeResult:
        offset = 0
        whole_file = len(head) < self.head_bytes
        for _ in range(MAX_TOP_LEVEL_BOXES):
            if whole_file or offset + 16 <= len(head):
                window = head[offset:offset + 16]
            else:
                window = await self._read_range(url, offset, 16)
            header = read_box_header(window)
            if header is None:
                break
            size, box_type, header_len = header
            if box_type == b"moov":
                if size is None or size > MAX_MOOV_BYTES:
                    raise ValueError(f"moov box of {url} is not readable (size={size})")
                if whole_file or offset + size <= len(head):
                    moov = head[offset:offset + size]
                else:
                    moov = await self._read_range(url, offset, size)
                dims = mp4_dimensions(moov[header_len:])
                if dims is None:
                    raise ValueError(f"no video track in {url}")
                return ProbeResult(width=dims[0], height=dims[1])
            if size is None:
                break
            offset += size
        raise ValueError(f"no moov box in {url}")

    async def probe(self, url: str) -> ProbeResult:
        head = await self._read_range(url, 0, self.head_bytes)
        if is_playlist(head):
            result = self._from_playlist(url, head)
        else:
            result = await self._from_media_file(url, head)
        logger.debug("video_probed", url=url, width=result.width, height=result.height)
        return result
