"""Tests for capture settings (TOML)."""

import stat
from pathlib import Path

from recollect.utils.capture_config import (
    DEFAULT_BACKFILL_DAYS,
    DEFAULT_EXCLUDED,
    CaptureConfig,
    load_capture_config,
    save_capture_config,
)


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_capture_config(tmp_path / "nope.toml")
    assert config.excluded == DEFAULT_EXCLUDED
    assert config.backfill_days == DEFAULT_BACKFILL_DAYS


def test_defaults_are_not_shared() -> None:
    a = CaptureConfig()
    a.excluded.append("extra")
    assert "extra" not in CaptureConfig().excluded


def test_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "sub" / "config.toml"
    save_capture_config(CaptureConfig(excluded=['intranet\\.corp', 'say "hi"'], backfill_days=7), path)

    loaded = load_capture_config(path)
    assert loaded.excluded == ['intranet\\.corp', 'say "hi"']
    assert loaded.backfill_days == 7
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text('[capture]\nexcluded = "notalist"\nbackfill_days = -3\n')
    config = load_capture_config(path)
    assert config.excluded == DEFAULT_EXCLUDED
    assert config.backfill_days == DEFAULT_BACKFILL_DAYS


def test_malformed_toml_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[capture\nexcluded = ")
    assert load_capture_config(path).backfill_days == DEFAULT_BACKFILL_DAYS
