from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from pipeline.cache_store import EnrichmentCache
from pipeline.enrichment_service import EnrichmentService, per_attempt_timeout
from pipeline.title_shortening_service import TitleShorteningService
from tests.fixtures import make_record

LONG_TITLE = "Bu başlık altmış karakterden çok daha uzun olduğu için kısaltılması gereken bir haber başlığıdır"


class _Completions:
    """Scripted chat completions; ``None`` hangs until cancelled."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if outcome is None:
            await asyncio.sleep(10)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))])


def _shortener(completions, **kwargs) -> TitleShorteningService:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    params = {"model": "test-model", "limit": 60, "max_retries": 1, "timeout_s": 0.05, "backoff_s": 0.01}
    params.update(kwargs)
    return TitleShorteningService(client=client, **params)


@pytest.mark.asyncio
async def test_hung_attempt_is_retried_within_record_budget(tmp_path):
    completions = _Completions(None, '"Kısa başlık"\naçıklama')
    service = EnrichmentService(
        EnrichmentCache.load(tmp_path / "metadata.json"),
        prober=None,
        shortener=_shortener(completions),
        timeout_s=1.0,
    )

    assert await service.get_short_title(make_record(5, title=LONG_TITLE)) == "Kısa başlık"
    assert len(completions.calls) == 2
    assert completions.calls[0]["timeout"] == 0.05


@pytest.mark.asyncio
async def test_empty_completions_exhaust_retries():
    completions = _Completions("", "  ")

    with pytest.raises(RuntimeError, match="failed after retries"):
        await _shortener(completions).shorten(LONG_TITLE)

    assert len(completions.calls) == 2


def test_per_attempt_timeout_fits_the_record_budget():
    timeout = per_attempt_timeout(60.0, max_retries=2, first_delay_s=0.9)
    assert timeout == pytest.approx((60.0 - 2.7) / 3)
    assert 3 * timeout + 0.9 + 1.8 <= 60.0 + 1e-9
    assert per_attempt_timeout(60.0, max_retries=0, first_delay_s=1.0) == 60.0
    assert per_attempt_timeout(2.0, max_retries=5, first_delay_s=1.0) == 1.0
