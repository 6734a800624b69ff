"""Utility functions for Mite.

Key functions:
    identifier: Turn a path into an identifier-safe name.
    slugify: Convert names to URL slugs.
    titleize: Convert directory or file names to human-readable titles.
    is_markdown: Check if a path is a Markdown file.
    is_template: Check if a path is a .mite template.
    is_internal_path: Check if a path is hidden from page discovery.
    flatten_data: Flatten nested data into string keys and values.
    url_for_dir: Derive the page URL for an output directory.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import Any

MARKDOWN_SUFFIX = ".md"
TEMPLATE_SUFFIX = ".mite"

_IDENTIFIER_RE = re.compile(r"[^A-Za-z0-9]")


def identifier(rel_path: str) -> str:
    """Derive an identifier-safe name from a relative source path.

    The ``.md``/``.mite`` extension is dropped and every non-alphanumeric
    character becomes an underscore.

    Examples:
        >>> identifier("blog/hello-world/index.md")
        'blog_hello_world_index'
    """
    name = rel_path
    for suffix in (MARKDOWN_SUFFIX, TEMPLATE_SUFFIX):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    name = _IDENTIFIER_RE.sub("_", name)
    if not name or name[0].isdigit():
        name = f"_{name}"
    return name


def slugify(name: str) -> str:
    """Convert a name to a slug, dropping a YYYY-MM-DD- date prefix.

    Args:
        name: Filename stem or free text.

    Returns:
        URL-friendly slug.
    """
    cleaned = name
    if "-" in cleaned:
        parts = cleaned.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            cleaned = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(name: str) -> str:
    """Convert a directory or file name to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Examples:
        >>> titleize("2024-01-15-hello-world")
        'Hello World'

        >>> titleize("getting-started.md")
        'Getting Started'
    """
    base = Path(name).stem if name.endswith(MARKDOWN_SUFFIX) else name
    if "-" in base:
        parts = base.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            base = "-".join(parts[3:])
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def is_markdown(path: Path) -> bool:
    return path.suffix.lower() == MARKDOWN_SUFFIX


def is_template(path: Path) -> bool:
    return path.suffix == TEMPLATE_SUFFIX


def is_internal_path(path: Path) -> bool:
    """Check if any directory of a relative path starts with ``_`` or ``.``.

    Internal directories hold includes, data and tooling, never pages.
    """
    return any(part.startswith(("_", ".")) for part in path.parts[:-1])


def url_for_dir(rel_dir: str) -> str:
    """Return the URL of a page written to ``rel_dir/index.html``.

    Examples:
        >>> url_for_dir("blog/hello")
        '/blog/hello/'
        >>> url_for_dir(".")
        '/'
    """
    parts = [p for p in PurePosixPath(rel_dir).parts if p not in (".", "")]
    return "/" + "".join(f"{p}/" for p in parts)


def flatten_data(data: Any, prefix: str = "") -> dict[str, str]:
    """Flatten nested mappings and lists into dotted string keys.

    Examples:
        >>> flatten_data({"nav": [{"label": "Home"}], "title": "Site"})
        {'nav.0.label': 'Home', 'title': 'Site'}
    """
    flat: dict[str, str] = {}
    if isinstance(data, Mapping):
        items = [(str(k), v) for k, v in data.items()]
    elif isinstance(data, (list, tuple)):
        items = [(str(i), v) for i, v in enumerate(data)]
    else:
        if prefix:
            flat[prefix] = "" if data is None else str(data)
        return flat
    for key, value in items:
        flat.update(flatten_data(value, f"{prefix}.{key}" if prefix else key))
    return flat
