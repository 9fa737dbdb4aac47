from __future__ import annotations

import pytest

from migrator.config import settings
from migrator.models.editorial_rules import (
    DEFAULT_COLUMN_BRAND_SLUG,
    clear_editorial_rules_cache,
    load_editorial_rules,
)


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_editorial_rules_cache()
    yield
    clear_editorial_rules_cache()


def test_load_rules_from_yaml(tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text(
        """
columns:
  brand_slug: kose
  authors:
    - Ayşe Demir
infographic_slug: grafik
excluded:
  - brand_slug: gundem
    author_name: Sistem Editörü
  - not-a-mapping
""",
        encoding="utf-8",
    )
    rules = load_editorial_rules(str(path))

    assert rules.column_brand_slug == "kose"
    assert rules.infographic_slug == "grafik"
    assert rules.is_column_author("  ayşe   DEMIR ")
    assert rules.is_excluded("gundem", "Sistem Editörü")
    assert not rules.is_excluded("spor", "Sistem Editörü")
    assert len(rules.excluded_pairs) == 1


def test_missing_rules_file_falls_back_to_defaults(tmp_path):
    rules = load_editorial_rules(str(tmp_path / "missing.yml"))
    assert rules.column_brand_slug == DEFAULT_COLUMN_BRAND_SLUG
    assert rules.column_authors == frozenset()


def test_shipped_rules_file_parses():
    rules = load_editorial_rules(settings.EDITORIAL_RULES_PATH)
    assert rules.column_brand_slug == "yakin-plan"
    assert rules.infographic_slug == "infografik"
    assert rules.column_authors
