"""Site model for Mite.

In-memory representation of one build: the pages (documents), the layouts
and includes (templates), and the registry that resolves names and paths to
them. Compilation of each source into instruction sequences happens here,
lazily and at most once per source.

Key classes:
- Document: One markdown page.
- Template: One layout or include.
- SiteModel: Registry of pages and templates in discovery order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .markdown import render_markdown
from .runtime import (
    DEFAULT_LAYOUT,
    INCLUDE,
    LAYOUT,
    MiteError,
    PageNotFoundError,
    TemplateError,
    TemplateNotFoundError,
)
from .transpiler import Instruction, transpile
from .utils import identifier, titleize, url_for_dir


class CompileError(MiteError):
    """A page or template source could not be read or compiled.

    Attributes:
        input_path: Offending source, relative to the project root.
        error: The underlying exception.
    """

    def __init__(self, input_path: str, error: Exception):
        self.input_path = input_path
        self.error = error
        super().__init__(f"{input_path}: {error}")


@dataclass
class Document:
    """A markdown page.

    Attributes:
        root: Project root all relative paths are based on.
        input_path: Markdown source relative to the root (posix).
        output_path: Generated HTML file relative to the root (posix).
        name: Identifier-safe name derived from input_path.
        layout: Selected layout name; front matter may change it at runtime.
        title, description, url, date, tags: Standard fields (defaults).
        data: Initial key/value map.
        body: Compiled body instructions, set by compile().
        front_matter: Compiled front matter instructions, set by compile().
        has_front_matter: Whether the source carried a front matter block.
    """

    root: Path
    input_path: str
    output_path: str
    name: str
    layout: str = DEFAULT_LAYOUT
    title: str = ""
    description: str = ""
    url: str = "/"
    date: str = ""
    tags: list[str] = field(default_factory=list)
    data: dict[str, str] = field(default_factory=dict)
    body: list[Instruction] | None = None
    front_matter: list[Instruction] = field(default_factory=list)
    has_front_matter: bool = False

    @classmethod
    def from_path(cls, root: Path, path: Path, layout: str | None = None) -> Document:
        """Create a document with default fields for a markdown file under ``root``."""
        rel = path.relative_to(root)
        rel_dir = rel.parent.as_posix()
        return cls(
            root=root,
            input_path=rel.as_posix(),
            output_path=(rel.parent / "index.html").as_posix(),
            name=identifier(rel.as_posix()),
            layout=layout or DEFAULT_LAYOUT,
            title="Home" if rel_dir == "." else titleize(rel.parent.name),
            url=url_for_dir(rel_dir),
        )

    @property
    def source_file(self) -> Path:
        return self.root / self.input_path

    @property
    def output_file(self) -> Path:
        return self.root / self.output_path

    @property
    def compiled(self) -> bool:
        return self.body is not None

    def compile(self, highlight: bool = False) -> list[Instruction]:
        """Render and transpile the markdown source once.

        Returns:
            The body instruction sequence.
        """
        if self.body is None:
            text = self.source_file.read_text(encoding="utf-8")
            rendered = render_markdown(text, highlight=highlight)
            self.has_front_matter = rendered.has_front_matter
            self.front_matter = transpile(rendered.front_matter)
            self.body = transpile(rendered.body)
        return self.body


@dataclass
class Template:
    """A ``.mite`` layout or include.

    Attributes:
        root: Project root.
        input_path: Template source relative to the root (posix).
        name: Filename without extension; the name used for lookups.
        kind: LAYOUT or INCLUDE.
        routine_name: Name of the generated routine, unique within a site.
    """

    root: Path
    input_path: str
    name: str
    kind: str = LAYOUT
    routine_name: str = ""
    _instructions: list[Instruction] | None = field(default=None, repr=False)

    @property
    def source_file(self) -> Path:
        return self.root / self.input_path

    @property
    def is_layout(self) -> bool:
        return self.kind == LAYOUT

    @property
    def instructions(self) -> list[Instruction]:
        """The compiled instruction sequence, read and transpiled on first use."""
        if self._instructions is None:
            self._instructions = transpile(self.source_file.read_text(encoding="utf-8"))
        return self._instructions


class SiteModel:
    """Registry of all pages and templates of one build.

    Pages and templates keep discovery order. A template path registered
    twice resolves to the same Template; two different paths may not share
    a name.
    """

    def __init__(self, root: Path):
        self.root = root
        self.pages: list[Document] = []
        self.templates: dict[str, Template] = {}
        self.warnings: list[str] = []
        self._pages_by_input: dict[str, Document] = {}
        self._names: set[str] = set()
        self._routine_names: set[str] = set()

    def add_page(self, document: Document) -> Document:
        if document.input_path in self._pages_by_input:
            return self._pages_by_input[document.input_path]
        base = document.name
        counter = 2
        while document.name in self._names:
            document.name = f"{base}_{counter}"
            counter += 1
        self._names.add(document.name)
        self.pages.append(document)
        self._pages_by_input[document.input_path] = document
        return document

    def page(self, input_path: str) -> Document:
        try:
            return self._pages_by_input[input_path]
        except KeyError:
            raise PageNotFoundError(input_path) from None

    def add_template(self, path: Path, kind: str = LAYOUT) -> Template:
        if kind not in (LAYOUT, INCLUDE):
            raise TemplateError(f"unknown template kind {kind!r} for {path}")
        rel = path.relative_to(self.root).as_posix()
        name = path.stem
        existing = self.templates.get(name)
        if existing is not None:
            if existing.input_path == rel:
                return existing
            raise TemplateError(
                f"template name {name!r} is used by both {existing.input_path} and {rel}"
            )
        base = routine_name = f"template_{identifier(name)}"
        counter = 2
        while routine_name in self._routine_names:
            routine_name = f"{base}_{counter}"
            counter += 1
        self._routine_names.add(routine_name)
        template = Template(
            root=self.root, input_path=rel, name=name, kind=kind, routine_name=routine_name
        )
        self.templates[name] = template
        return template

    def find_template(self, name: str) -> Template | None:
        return self.templates.get(name)

    def template(self, name: str) -> Template:
        """Look up a template by name.

        Raises:
            TemplateNotFoundError: If no template of that name was registered.
        """
        template = self.find_template(name)
        if template is None:
            raise TemplateNotFoundError(name)
        return template

    def layouts(self) -> list[Template]:
        return [t for t in self.templates.values() if t.is_layout]

    def includes(self) -> list[Template]:
        return [t for t in self.templates.values() if not t.is_layout]

    def compile(self, highlight: bool = False) -> None:
        """Compile every page and template, recording advisory warnings.

        Raises:
            CompileError: Naming the first source that could not be read or compiled.
        """
        for template in self.templates.values():
            try:
                template.instructions  # noqa: B018 - compiles and caches
            except (OSError, UnicodeDecodeError, MiteError) as exc:
                raise CompileError(template.input_path, exc) from exc
        for document in self.pages:
            try:
                document.compile(highlight=highlight)
            except (OSError, UnicodeDecodeError, MiteError) as exc:
                raise CompileError(document.input_path, exc) from exc
            if not document.has_front_matter:
                self.warnings.append(
                    f"{document.input_path}: no front matter; using default page fields"
                )
