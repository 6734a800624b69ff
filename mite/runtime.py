"""Runtime support for generated Mite site programs.

The code assembler copies this module's source verbatim to the top of every
generated program, so a kept ``site.py`` runs on its own with nothing but the
standard library. Keep it free of imports from the rest of the package.

Key pieces:
- OutputBuffer: Reusable byte buffer shared by every page render.
- SitePage / Entry: Page-like records with a parsed date.
- SiteGlobal: Global state holding pages, templates, data and collections.
- RenderContext: Emission intrinsics bound to one routine invocation.
- render_page / write_output / run_main: Driver helpers.
"""

from __future__ import annotations

import re
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable

LAYOUT = "layout"
INCLUDE = "include"
DEFAULT_LAYOUT = "index"

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_DMY_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

_HTML_ESCAPES = str.maketrans(
    {
        "<": "&lt;",
        ">": "&gt;",
        "&": "&amp;",
        "'": "&#39;",
        '"': "&quot;",
    }
)


class MiteError(Exception):
    """Base class for every error raised while building a site."""


class TemplateNotFoundError(MiteError):
    """A template name was looked up but never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"template not found: {name!r}")


class PageNotFoundError(MiteError):
    """A page was looked up by an input path that was never registered."""

    def __init__(self, input_path: str):
        self.input_path = input_path
        super().__init__(f"page not found: {input_path!r}")


class TemplateError(MiteError):
    """A template was registered or used in a way its kind does not allow."""


class RenderError(MiteError):
    """A render routine misused one of the emission intrinsics."""


def escape_html(text: str) -> str:
    """Escape ``< > & ' "`` for inclusion in HTML text or attributes.

    Examples:
        >>> escape_html('<a href="x">Tom & Jerry\\'s</a>')
        '&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&#39;s&lt;/a&gt;'
    """
    return text.translate(_HTML_ESCAPES)


def parse_date(value: Any) -> date | None:
    """Parse a page date into a calendar date.

    ISO ``YYYY-MM-DD`` (optionally followed by a time) is the canonical
    form. ``DD/MM/YYYY`` is still accepted for older content.

    Returns:
        The parsed date, or None for empty or unrecognised values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        match = _ISO_DATE_RE.match(text)
        if match:
            return date(int(match[1]), int(match[2]), int(match[3]))
        match = _DMY_DATE_RE.match(text)
        if match:
            return date(int(match[3]), int(match[2]), int(match[1]))
    except ValueError:
        return None
    return None


def sort_by_date(items: Iterable[Any], reverse: bool = True) -> list[Any]:
    """Order page-like items by their parsed date, newest first by default.

    Items with equal dates keep their original order. Undated items are
    placed after all dated ones in either direction.
    """
    dated = []
    undated = []
    for item in items:
        (undated if item.when is None else dated).append(item)
    return sorted(dated, key=lambda item: item.when, reverse=reverse) + undated


class _Dated:
    """Mixin storing the author's date text alongside its parsed value."""

    _date = ""
    _when: date | None = None

    @property
    def date(self) -> str:
        return self._date

    @date.setter
    def date(self, value: Any) -> None:
        self._date = "" if value is None else str(value)
        self._when = parse_date(value)

    @property
    def when(self) -> date | None:
        return self._when


class DataMap:
    """String to string store with the ``set/get/has/equals`` accessors."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def set(self, key: str, value: Any) -> None:
        self.data[str(key)] = "" if value is None else str(value)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self.data

    def equals(self, key: str, value: Any) -> bool:
        return key in self.data and self.data[key] == str(value)


class Entry(_Dated):
    """Page-like item stored in a custom collection."""

    def __init__(self, title: str = "", description: str = "", url: str = "", date: Any = ""):
        self.title = title
        self.description = description
        self.url = url
        self.date = date

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Entry({self.title!r}, {self.url!r})"


class Collection(list):
    """Ordered, growable list of page-like entries."""

    def __init__(self, name: str, items: Iterable[Any] = ()):
        super().__init__(items)
        self.name = name

    def add(self, title: str = "", description: str = "", url: str = "", date: Any = "") -> Entry:
        entry = Entry(title=title, description=description, url=url, date=date)
        self.append(entry)
        return entry

    def sorted_by_date(self, reverse: bool = True) -> Collection:
        return Collection(self.name, sort_by_date(self, reverse=reverse))

    def latest(self, count: int = 5) -> Collection:
        return Collection(self.name, self.sorted_by_date()[:count])


class SitePage(DataMap, _Dated):
    """One page as seen by embedded code.

    Attributes:
        name: Identifier-safe name derived from the input path.
        title, description, url, date, tags: Standard fields.
        input_path: Markdown source, relative to the project root.
        output_path: Generated HTML file, relative to the project root.
        layout: Name of the layout template rendering this page.
        content: The page's own content routine.
        site: The SiteGlobal the page is registered with.
    """

    def __init__(
        self,
        name: str,
        title: str,
        input_path: str,
        output_path: str,
        url: str = "/",
        description: str = "",
        date: Any = "",
        tags: Iterable[str] = (),
        layout: str | None = DEFAULT_LAYOUT,
        content: Callable[..., None] | None = None,
    ):
        super().__init__()
        self.name = name
        self.title = title
        self.input_path = input_path
        self.output_path = output_path
        self.url = url
        self.description = description
        self.date = date
        self.tags = list(tags)
        self.layout = layout
        self.content = content
        self.site: SiteGlobal | None = None
        self._in_content = False

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"SitePage({self.input_path!r})"


class TemplateHandle:
    """A compiled layout or include as registered with the site."""

    def __init__(self, name: str, routine: Callable[..., None], kind: str):
        if kind not in (LAYOUT, INCLUDE):
            raise TemplateError(f"unknown template kind {kind!r} for {name!r}")
        self.name = name
        self.routine = routine
        self.kind = kind

    @property
    def is_layout(self) -> bool:
        return self.kind == LAYOUT

    def __call__(self, out: OutputBuffer, page: SitePage, content: Callable[..., None] | None) -> None:
        self.routine(out, page, content)


class SiteGlobal(DataMap):
    """Global state of one build: pages, templates, data and collections."""

    def __init__(self, title: str = "", description: str = "", url: str = "", favicon: str = ""):
        super().__init__()
        self.title = title
        self.description = description
        self.url = url
        self.favicon = favicon
        self.pages: list[SitePage] = []
        self.templates: dict[str, TemplateHandle] = {}
        self.collections: dict[str, Collection] = {}
        self.warnings: list[str] = []
        self._pages_by_input: dict[str, SitePage] = {}

    def add_page(self, page: SitePage) -> SitePage:
        page.site = self
        self.pages.append(page)
        self._pages_by_input[page.input_path] = page
        return page

    def page_by_input(self, input_path: str) -> SitePage:
        try:
            return self._pages_by_input[input_path]
        except KeyError:
            raise PageNotFoundError(input_path) from None

    def add_template(self, name: str, routine: Callable[..., None], kind: str) -> TemplateHandle:
        handle = TemplateHandle(name, routine, kind)
        self.templates[name] = handle
        return handle

    def find_template(self, name: str | None) -> TemplateHandle | None:
        if not name:
            return None
        return self.templates.get(name)

    def lookup_template(self, name: str) -> TemplateHandle:
        handle = self.find_template(name)
        if handle is None:
            raise TemplateNotFoundError(name)
        return handle

    def collection(self, name: str) -> Collection:
        if name not in self.collections:
            self.collections[name] = Collection(name)
        return self.collections[name]

    def warn(self, message: str) -> None:
        self.warnings.append(message)


class OutputBuffer:
    """Byte buffer reused across pages.

    ``reset`` only drops the logical length; the storage allocated for the
    largest page so far is kept and overwritten by the next render.
    """

    def __init__(self) -> None:
        self._data = bytearray()
        self._length = 0

    def write(self, data: bytes) -> None:
        end = self._length + len(data)
        self._data[self._length : end] = data
        self._length = end

    def getvalue(self) -> bytes:
        return bytes(self._data[: self._length])

    def reset(self) -> None:
        self._length = 0

    @property
    def capacity(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return self._length

    def write_to(self, stream) -> None:
        with memoryview(self._data)[: self._length] as view:
            stream.write(view)


def _call_content(out: OutputBuffer, page: SitePage, content: Callable[..., None] | None) -> None:
    if content is None:
        raise RenderError(f"{page.input_path}: page has no content routine")
    if page._in_content:
        raise RenderError(f"{page.input_path}: CONTENT() called from inside the page's own content")
    page._in_content = True
    try:
        content(out, page, content)
    finally:
        page._in_content = False


class RenderContext:
    """Emission intrinsics for one invocation of a render routine."""

    def __init__(self, out: OutputBuffer, page: SitePage, content: Callable[..., None] | None):
        self.out = out
        self.page = page
        self.content = content

    def OUT_HTML(self, data: bytes) -> None:
        self.out.write(data)

    def INT(self, value: int) -> None:
        self.out.write(str(int(value)).encode("utf-8"))

    def STR(self, value: Any) -> None:
        if value is not None:
            self.out.write(str(value).encode("utf-8"))

    def RAWSTR(self, text: str | bytes) -> None:
        self.out.write(text.encode("utf-8") if isinstance(text, str) else bytes(text))

    def SV(self, view: Any) -> None:
        if isinstance(view, str):
            self.out.write(view.encode("utf-8"))
        else:
            self.out.write(bytes(view))

    def ESC(self, value: Any) -> None:
        if value is not None:
            self.out.write(escape_html(str(value)).encode("utf-8"))

    def CONTENT(self) -> None:
        _call_content(self.out, self.page, self.content)

    def INCLUDE(self, name: str) -> None:
        if self.page.site is None:
            raise RenderError(f"{self.page.input_path}: page is not registered with a site")
        handle = self.page.site.lookup_template(name)
        if handle.is_layout:
            raise TemplateError(f"{name!r} is a layout and cannot be included")
        handle(self.out, self.page, self.content)


def intrinsics(out: OutputBuffer, page: SitePage, content: Callable[..., None] | None) -> tuple:
    """Return the intrinsics in the order generated routines unpack them."""
    ctx = RenderContext(out, page, content)
    return (
        ctx.OUT_HTML,
        ctx.INT,
        ctx.STR,
        ctx.RAWSTR,
        ctx.SV,
        ctx.ESC,
        ctx.CONTENT,
        ctx.INCLUDE,
    )


def render_page(site: SiteGlobal, page: SitePage, out: OutputBuffer) -> None:
    """Render ``page`` into ``out`` through its layout.

    A page whose layout name is empty or unknown is rendered by its own
    content routine alone.
    """
    layout = site.find_template(page.layout)
    if layout is None:
        if page.layout:
            site.warn(f"{page.input_path}: layout {page.layout!r} not found; rendering content only")
        _call_content(out, page, page.content)
        return
    if not layout.is_layout:
        raise TemplateError(f"{page.input_path}: {page.layout!r} is an include and cannot be used as a layout")
    layout(out, page, page.content)


def write_output(root: str | Path, page: SitePage, out: OutputBuffer) -> Path:
    target = Path(root) / page.output_path
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as f:
        out.write_to(f)
    return target


def run_main(build: Callable[..., SiteGlobal], argv: list[str] | None = None) -> int:
    """Run a generated ``build`` as a standalone program and return its exit status."""
    root = argv[0] if argv else "."
    try:
        site = build(root)
    except (MiteError, OSError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    for warning in site.warnings:
        print(f"[warning] {warning}", file=sys.stderr)
    print("[done]")
    return 0
