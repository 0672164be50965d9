"""
Cache cleanup — remove AutoPkg download and recipe cache entries.

Layout of the cache directory::

    <cache_dir>/
        downloads/           shared download cache
        <recipe identifier>/ one directory per recipe

With ``keep_days`` set, only entries at least that many days old
are removed.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from autopkgctl.core.models.options import CleanupOptions

logger = logging.getLogger(__name__)

DOWNLOADS_DIR = "downloads"
_DAY_SECONDS = 24 * 60 * 60


class CleanupError(Exception):
    """Raised when the cache directory is missing or unreadable."""


@dataclass
class CleanupReport:
    removed: list[str] = field(default_factory=list)
    kept: int = 0
    errors: list[str] = field(default_factory=list)


def default_cache_dir() -> Path:
    return Path.home() / "Library" / "AutoPkg" / "Cache"


def _clean_directory(directory: Path, keep_days: int, now: float, report: CleanupReport) -> None:
    for entry in sorted(directory.iterdir()):
        try:
            age_days = int((now - entry.lstat().st_mtime) // _DAY_SECONDS)
        except OSError as e:
            logger.warning("⚠ Failed to stat %s: %s", entry, e)
            report.errors.append(f"{entry}: {e}")
            continue

        if keep_days > 0 and age_days < keep_days:
            report.kept += 1
            continue

        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError as e:
            logger.warning("⚠ Failed to remove %s: %s", entry, e)
            report.errors.append(f"{entry}: {e}")
        else:
            logger.info("Removed %s", entry)
            report.removed.append(str(entry))


def cleanup_cache(options: CleanupOptions | None = None, cache_dir: str | Path | None = None) -> CleanupReport:
    """Remove cached downloads and recipe cache contents.

    Individual removal failures are logged and collected; the cache
    directories themselves are never deleted.

    Raises:
        CleanupError: If the cache directory does not exist.
    """
    if options is None:
        options = CleanupOptions()

    root = Path(cache_dir) if cache_dir else default_cache_dir()
    if not root.is_dir():
        raise CleanupError(f"cache directory does not exist: {root}")

    logger.info("Cleaning up AutoPkg cache in %s", root)
    report = CleanupReport()
    now = time.time()

    if options.remove_downloads:
        downloads = root / DOWNLOADS_DIR
        if downloads.is_dir():
            _clean_directory(downloads, options.keep_days, now, report)

    if options.remove_recipe_cache:
        for entry in sorted(root.iterdir()):
            if entry.is_dir() and entry.name != DOWNLOADS_DIR:
                _clean_directory(entry, options.keep_days, now, report)

    logger.info(
        "✓ Cache cleanup completed: %d removed, %d kept", len(report.removed), report.kept
    )
    return report
