"""Source discovery for Mite.

Walks a project root and registers its pages and templates with a
SiteModel, in a stable order.

Layout of a project:
- ``index.md`` and ``index.mite`` at the root: home page and default layout.
- ``_includes/**/*.mite``: include templates.
- any other ``*.mite``: a layout named after its file. It is the default
  layout of the pages in its directory and below.
- ``<dir>/index.md`` (or the first ``*.md`` of a directory): one page
  written to ``<dir>/index.html``.

Directories starting with ``_`` or ``.`` never hold pages.

Key classes:
- FileContentLoader: Lists markdown and template files.
- LayoutResolver: Picks the default layout of a page.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from .model import Document, SiteModel
from .runtime import DEFAULT_LAYOUT, INCLUDE, LAYOUT
from .utils import MARKDOWN_SUFFIX, is_internal_path, is_markdown, is_template

INCLUDES_DIR = "_includes"
INDEX_PAGE = "index" + MARKDOWN_SUFFIX
REQUIRED_FILES = ("index.md", "index.mite")


class FileContentLoader:
    """Lists the source files of a project.

    Attributes:
        root: Project root directory.
    """

    def __init__(self, root: Path):
        self.root = root

    def _walk(self) -> list[Path]:
        files = []
        for path in sorted(self.root.rglob("*")):
            rel = path.relative_to(self.root)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if path.is_file():
                files.append(path)
        return files

    def iter_templates(self) -> list[tuple[Path, str]]:
        """Return (path, kind) for every template, root templates first."""
        found = []
        for path in self._walk():
            if not is_template(path):
                continue
            rel = path.relative_to(self.root)
            kind = INCLUDE if INCLUDES_DIR in rel.parts[:-1] else LAYOUT
            found.append((path, kind))
        found.sort(key=lambda item: (len(item[0].relative_to(self.root).parts), str(item[0])))
        return found

    def iter_pages(self) -> tuple[list[Path], list[Path]]:
        """Return the page sources, home page first, and the ignored extras.

        A directory contributes at most one page: its ``index.md``, or else
        the first markdown file in name order.
        """
        by_dir: dict[Path, list[Path]] = {}
        for path in self._walk():
            rel = path.relative_to(self.root)
            if not is_markdown(path) or is_internal_path(rel):
                continue
            by_dir.setdefault(path.parent, []).append(path)

        pages: list[Path] = []
        ignored: list[Path] = []
        for directory in sorted(by_dir, key=lambda d: (d != self.root, str(d))):
            candidates = by_dir[directory]
            chosen = next((p for p in candidates if p.name == INDEX_PAGE), candidates[0])
            pages.append(chosen)
            ignored.extend(p for p in candidates if p != chosen)
        return pages, ignored


class LayoutResolver:
    """Resolves the default layout of a page.

    The nearest directory, walking up from the page to the root, that holds
    a layout template decides; the fixed default applies otherwise. Within a
    directory, a layout named ``index`` or after the directory wins over the
    others.
    """

    def __init__(self, root: Path, layouts: Iterable[Path]):
        self.root = root
        self._by_dir: dict[Path, str] = {}
        for path in layouts:
            preferred = (DEFAULT_LAYOUT, path.parent.name)
            current = self._by_dir.get(path.parent)
            if current is None or (path.stem in preferred and current not in preferred):
                self._by_dir[path.parent] = path.stem

    def resolve(self, page_path: Path) -> str:
        directory = page_path.parent
        while True:
            if directory in self._by_dir:
                return self._by_dir[directory]
            if directory == self.root or directory == directory.parent:
                return DEFAULT_LAYOUT
            directory = directory.parent


def missing_required_files(root: Path) -> list[str]:
    return [name for name in REQUIRED_FILES if not (root / name).is_file()]


def discover(root: Path) -> SiteModel:
    """Build a SiteModel with every page and template under ``root``.

    Pages are registered with default fields; nothing is compiled yet.
    """
    model = SiteModel(root)
    loader = FileContentLoader(root)

    templates = loader.iter_templates()
    for path, kind in templates:
        model.add_template(path, kind)
    resolver = LayoutResolver(root, [path for path, kind in templates if kind == LAYOUT])

    pages, ignored = loader.iter_pages()
    for path in pages:
        model.add_page(Document.from_path(root, path, layout=resolver.resolve(path)))
    for path in ignored:
        model.warnings.append(
            f"{path.relative_to(root).as_posix()}: ignored; its directory already has a page"
        )
    return model
