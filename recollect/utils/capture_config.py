"""Capture settings: exclusion patterns and backfill window.

Read from the `[capture]` table of ~/.recollect/config.toml. The file is
owned by the user; the ingestion pipeline only consults it.
"""

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".recollect" / "config.toml"

DEFAULT_EXCLUDED = [
    "mail.google.",
    "accounts.google.",
    "calendar.google.",
    "paypal.com",
    "bank",
    "secure",
    "auth",
    "login",
]
DEFAULT_BACKFILL_DAYS = 14


@dataclass
class CaptureConfig:
    """User-owned capture policy."""

    excluded: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED))
    backfill_days: int = DEFAULT_BACKFILL_DAYS


def _load_toml(path: Path) -> dict:
    """Parse a TOML file, returning {} when it is missing or malformed."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}


def load_capture_config(config_path: Optional[Path] = None) -> CaptureConfig:
    """Load capture settings, falling back to defaults field by field."""
    section = _load_toml(config_path or DEFAULT_CONFIG_PATH).get("capture", {})
    config = CaptureConfig()

    excluded = section.get("excluded")
    if isinstance(excluded, list):
        config.excluded = [str(p) for p in excluded if str(p).strip()]

    days = section.get("backfill_days")
    if isinstance(days, int) and not isinstance(days, bool) and days > 0:
        config.backfill_days = days

    return config


def save_capture_config(
    config: CaptureConfig, config_path: Optional[Path] = None
) -> None:
    """Write capture settings with owner-only permissions."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    # JSON string literals are valid TOML basic strings
    patterns = ", ".join(json.dumps(p) for p in config.excluded)
    lines = [
        "# Recollect - capture settings",
        "",
        "[capture]",
        f"excluded = [{patterns}]",
        f"backfill_days = {int(config.backfill_days)}",
        "",
    ]
    path.write_text("\n".join(lines))
    os.chmod(path, 0o600)
