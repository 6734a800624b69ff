"""Staleness check for incremental builds.

Compares modification times of sources against the generated pages. The
check is whole-build: a template newer than any page output forces a full
regeneration, not just of the pages using it.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from .model import Document, Template


def _mtime(path: Path) -> int | None:
    try:
        return os.stat(path).st_mtime_ns
    except FileNotFoundError:
        return None


def newest_mtime(paths: Iterable[Path]) -> int:
    """Return the newest modification time among ``paths`` (0 when none exist)."""
    newest = 0
    for path in paths:
        mtime = _mtime(path)
        if mtime is not None and mtime > newest:
            newest = mtime
    return newest


def needs_rebuild(
    pages: Iterable[Document],
    templates: Iterable[Template],
    extra_inputs: Iterable[Path] = (),
) -> bool:
    """Decide whether the site must be regenerated.

    Args:
        pages: Pages with their source and output paths.
        templates: Every layout and include.
        extra_inputs: Other sources every page depends on (config, data).

    Returns:
        True as soon as one page output is missing, or older than its
        markdown source or than the newest template or extra input.
    """
    newest_shared = newest_mtime([t.source_file for t in templates] + list(extra_inputs))
    for page in pages:
        output = _mtime(page.output_file)
        if output is None:
            return True
        source = _mtime(page.source_file)
        if source is not None and source > output:
            return True
        if newest_shared > output:
            return True
    return False
