# pipeline/title_shortening_service.py
from __future__ import annotations

import asyncio
import time
from typing import Optional

from openai import AsyncOpenAI

from migrator.config import require_openai, settings
from migrator.core.logging import get_logger

logger = get_logger()

SHORTEN_SYSTEM_PROMPT = (
    "Sen bir başlık kısaltma uzmanısın. Sana verilen başlığı {limit} karakterin altında "
    "olacak şekilde yeniden yaz. Başlığın tarzını ve mesajını koru. Sadece kısaltılmış "
    "başlığı döndür, başka açıklama yapma."
)


def _first_line(text: str) -> str:
    for line in (text or "").splitlines():
        line = line.strip().strip('"').strip("“”").strip()
        if line:
            return line
    return ""


class TitleShorteningService:
    """
    Chat-completion wrapper that turns a long headline into a list title.
    Works against the hosted API or any OpenAI-compatible server (OPENAI_BASE_URL).
    """

    def __init__(
        self,
        model: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        max_retries: int = 2,
        timeout_s: float = 20.0,
        backoff_s: float = 0.9,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model or settings.TITLE_SHORTEN_MODEL
        self.limit = limit or settings.TITLE_MAX_LENGTH
        self.max_retries = max_retries
        self.timeout_s = timeout_s
        self.backoff_s = backoff_s
        if client is None:
            require_openai()
            client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY or "not-needed",
                base_url=settings.OPENAI_BASE_URL,
            )
        self.client = client

    def _build_messages(self, title: str) -> list[dict]:
        return [
            {"role": "system", "content": SHORTEN_SYSTEM_PROMPT.format(limit=self.limit)},
            {"role": "user", "content": title},
        ]

    async def shorten(self, title: str) -> str:
        messages = self._build_messages(title)
        last_err: Optional[Exception] = None
        t0 = time.perf_counter()

        for attempt in range(self.max_retries + 1):
            try:
                completion = await asyncio.wait_for(
                    self.client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        temperature=0.2,
                        timeout=self.timeout_s,
                    ),
                    timeout=self.timeout_s,
                )
                shortened = _first_line(completion.choices[0].message.content or "")
                if not shortened:
                    raise ValueError("empty completion")
                logger.debug(
                    "title_shortened",
                    model=self.model,
                    attempt=attempt,
                    duration_ms=int((time.perf_counter() - t0) * 1000),
                    original_length=len(title),
                    shortened_length=len(shortened),
                )
                return shortened
            except Exception as e:
                last_err = e
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_s * (2 ** attempt))

        raise RuntimeError(f"TitleShorteningService failed after retries: {last_err}")
