"""Code assembly for Mite.

Links the compiled pages, layouts and includes of a SiteModel into one
Python program. The program starts with the source of ``mite.runtime`` so
it runs on its own, followed by:

- ``front_matter_<page>(site, page)`` for every page,
- ``template_<name>(out, page, content)`` for every layout and include,
- ``content_<page>(out, page, content)`` for every page,
- ``init_site()`` building the global state,
- ``build(root, echo)`` rendering every page, and ``main(argv)``.

Code spans are pasted as Python statements. A span whose last line ends
with ``:`` opens a block, ``<? end ?>`` closes it, and spans starting with
``elif``/``else``/``except``/``finally`` close the current block and open
the next one.
"""

from __future__ import annotations

import bisect
import io
import re
import tokenize
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from . import __version__
from . import runtime as runtime_module
from .model import Document, SiteModel, Template
from .runtime import LAYOUT, MiteError, TemplateNotFoundError
from .transpiler import EmitLiteral, ExecuteCode, Instruction

INDENT = "    "
BLOCK_END = "end"
INTRINSICS = "OUT_HTML, INT, STR, RAWSTR, SV, ESC, CONTENT, INCLUDE"
GENERATED_MARKER = "# --- generated site program ---"

_CONTINUATION_RE = re.compile(r"(elif|else|except|finally)\b")
_STATIC_INCLUDE_RE = re.compile(r"""\bINCLUDE\(\s*(['"])([^'"]+)\1\s*\)""")


class AssemblyError(MiteError):
    """The compiled sources cannot be linked into a valid program.

    Attributes:
        input_path: Source file the problem was found in.
    """

    def __init__(self, input_path: str, message: str):
        self.input_path = input_path
        self.message = message
        super().__init__(f"{input_path}: {message}")


@dataclass
class GeneratedProgram:
    """Source of a generated site program.

    Attributes:
        source: Python source text.
        origins: (first line, source path) pairs, sorted by line.
    """

    source: str
    origins: list[tuple[int, str]] = field(default_factory=list)

    def origin_of(self, lineno: int) -> str | None:
        """Return the page or template that produced a line of the program."""
        index = bisect.bisect_right([line for line, _ in self.origins], lineno) - 1
        if index < 0:
            return None
        return self.origins[index][1]

    def write(self, path: Path) -> Path:
        path.write_text(self.source, encoding="utf-8")
        return path


class CodeWriter:
    """Line buffer with indentation tracking."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.level = 0

    def line(self, text: str = "") -> None:
        self.lines.append(f"{INDENT * self.level}{text}" if text else "")

    def extend(self, text: str) -> None:
        for line in text.splitlines():
            self.lines.append(line)

    @property
    def lineno(self) -> int:
        """Number of the next line to be written (1-based)."""
        return len(self.lines) + 1

    @contextmanager
    def indented(self) -> Iterator[None]:
        self.level += 1
        try:
            yield
        finally:
            self.level -= 1

    def getvalue(self) -> str:
        return "\n".join(self.lines) + "\n"


_TRIVIA_TOKENS = frozenset(
    {
        tokenize.COMMENT,
        tokenize.NL,
        tokenize.NEWLINE,
        tokenize.INDENT,
        tokenize.DEDENT,
        tokenize.ENDMARKER,
    }
)


def _opens_block(source: str) -> bool:
    """Check whether a code span ends with a block-opening colon.

    Comments are ignored; a ``#`` inside a string literal is not a comment.
    Code that does not tokenize opens nothing and is left for the compiler
    to report.
    """
    last = None
    try:
        for token in tokenize.generate_tokens(io.StringIO(source).readline):
            if token.type not in _TRIVIA_TOKENS:
                last = token
    except (tokenize.TokenError, SyntaxError):
        return False
    return last is not None and last.type == tokenize.OP and last.string == ":"


class _BlockWriter:
    """Writes code spans into a routine body, tracking open blocks."""

    def __init__(self, writer: CodeWriter, input_path: str):
        self._writer = writer
        self._input_path = input_path
        self._base = writer.level
        self._depth = 0
        self._empty_block = False

    def statement(self, text: str) -> None:
        self._writer.line(text)
        self._empty_block = False

    def code(self, source: str) -> None:
        lines = source.splitlines()
        if source == BLOCK_END:
            self._close(BLOCK_END)
            return
        if _CONTINUATION_RE.match(lines[0]):
            self._close(lines[0])
        for line in lines:
            self.statement(line)
        if _opens_block(source):
            self._depth += 1
            self._writer.level += 1
            self._empty_block = True

    def _close(self, what: str) -> None:
        if self._depth == 0:
            raise AssemblyError(self._input_path, f"{what!r} without an open block")
        if self._empty_block:
            self._writer.line("pass")
        self._depth -= 1
        self._writer.level -= 1
        self._empty_block = False

    def finish(self) -> None:
        if self._depth:
            self._writer.level = self._base
            raise AssemblyError(
                self._input_path,
                f"{self._depth} block(s) left open; close them with <? {BLOCK_END} ?>",
            )


def _literal(value: Any) -> str:
    return repr("" if value is None else value)


class Assembler:
    """Builds a GeneratedProgram from a compiled SiteModel.

    Attributes:
        model: Site model whose pages and templates are already compiled.
        config: Site configuration (title, description, url, favicon).
        data: Flattened global key/value data.
        runtime_source: Source embedded at the top of the program.
    """

    def __init__(
        self,
        model: SiteModel,
        config: Mapping[str, Any] | None = None,
        data: Mapping[str, str] | None = None,
        runtime_source: str | None = None,
    ):
        self.model = model
        self.config = dict(config or {})
        self.data = dict(data or {})
        self.runtime_source = runtime_source
        self._writer = CodeWriter()
        self._origins: list[tuple[int, str]] = []

    def assemble(self) -> GeneratedProgram:
        self._check_includes()
        writer = self._writer
        writer.line(f"# Generated by mite {__version__}. Do not edit.")
        writer.extend(self.runtime_source or load_runtime_source())
        writer.line()
        writer.line(GENERATED_MARKER)
        for document in self.model.pages:
            self._front_matter_routine(document)
        for template in self.model.templates.values():
            self._template_routine(template)
        for document in self.model.pages:
            self._content_routine(document)
        self._origin(None)
        self._init_site()
        self._driver()
        return GeneratedProgram(source=writer.getvalue(), origins=self._origins)

    def _origin(self, input_path: str | None) -> None:
        self._origins.append((self._writer.lineno, input_path or "<driver>"))

    def _check_includes(self) -> None:
        """Fail early on ``INCLUDE("name")`` calls naming unknown templates."""
        sources: list[tuple[str, list[Instruction]]] = [
            (t.input_path, t.instructions) for t in self.model.templates.values()
        ]
        sources.extend((d.input_path, d.body or []) for d in self.model.pages)
        for input_path, instructions in sources:
            for instruction in instructions:
                if not isinstance(instruction, ExecuteCode):
                    continue
                for match in _STATIC_INCLUDE_RE.finditer(instruction.source):
                    name = match.group(2)
                    try:
                        template = self.model.template(name)
                    except TemplateNotFoundError as exc:
                        raise AssemblyError(input_path, str(exc)) from exc
                    if template.is_layout:
                        raise AssemblyError(
                            input_path, f"{name!r} is a layout and cannot be included"
                        )

    def _routine(self, signature: str, input_path: str, instructions: list[Instruction], prologue: list[str]) -> None:
        writer = self._writer
        writer.line()
        writer.line()
        self._origin(input_path)
        writer.line(f"# {input_path}")
        writer.line(f"def {signature}:")
        with writer.indented():
            for line in prologue:
                writer.line(line)
            body = _BlockWriter(writer, input_path)
            for instruction in instructions:
                if isinstance(instruction, EmitLiteral):
                    body.statement(f"OUT_HTML({instruction.data!r})")
                else:
                    body.code(instruction.source)
            body.finish()
            if not prologue and not instructions:
                writer.line("pass")

    def _front_matter_routine(self, document: Document) -> None:
        code = [i for i in document.front_matter if isinstance(i, ExecuteCode)]
        self._routine(f"front_matter_{document.name}(site, page)", document.input_path, code, [])

    def _template_routine(self, template: Template) -> None:
        self._routine(
            f"{template.routine_name}(out, page, content)",
            template.input_path,
            template.instructions,
            [f"{INTRINSICS} = intrinsics(out, page, content)", "site = page.site"],
        )

    def _content_routine(self, document: Document) -> None:
        self._routine(
            f"content_{document.name}(out, page, content)",
            document.input_path,
            document.body or [],
            [f"{INTRINSICS} = intrinsics(out, page, content)", "site = page.site"],
        )

    def _init_site(self) -> None:
        writer = self._writer
        config = self.config
        writer.line()
        writer.line()
        writer.line("def init_site():")
        with writer.indented():
            writer.line(
                "site = SiteGlobal("
                f"title={_literal(config.get('title'))}, "
                f"description={_literal(config.get('description'))}, "
                f"url={_literal(config.get('url'))}, "
                f"favicon={_literal(config.get('favicon'))})"
            )
            for key, value in self.data.items():
                writer.line(f"site.set({_literal(key)}, {_literal(value)})")
            for template in self.model.templates.values():
                kind = "LAYOUT" if template.kind == LAYOUT else "INCLUDE"
                writer.line(
                    f"site.add_template({template.name!r}, {template.routine_name}, {kind})"
                )
            for document in self.model.pages:
                writer.line(
                    "page = SitePage("
                    f"name={document.name!r}, "
                    f"title={_literal(document.title)}, "
                    f"input_path={document.input_path!r}, "
                    f"output_path={document.output_path!r}, "
                    f"url={_literal(document.url)}, "
                    f"description={_literal(document.description)}, "
                    f"date={_literal(document.date)}, "
                    f"tags={list(document.tags)!r}, "
                    f"layout={_literal(document.layout)}, "
                    f"content=content_{document.name})"
                )
                for key, value in document.data.items():
                    writer.line(f"page.set({_literal(key)}, {_literal(value)})")
                writer.line(f"front_matter_{document.name}(site, page)")
                writer.line("site.add_page(page)")
            writer.line("return site")

    def _driver(self) -> None:
        writer = self._writer
        writer.line()
        writer.line()
        writer.line("def build(root='.', echo=print):")
        with writer.indented():
            writer.line("site = init_site()")
            writer.line("out = OutputBuffer()")
            for document in self.model.pages:
                writer.line(f"page = site.page_by_input({document.input_path!r})")
                writer.line("echo(f'[rendering] {page.output_path}')")
                writer.line("render_page(site, page, out)")
                writer.line("write_output(root, page, out)")
                writer.line("out.reset()")
            writer.line("return site")
        writer.line()
        writer.line()
        writer.line("def main(argv=None):")
        with writer.indented():
            writer.line("return run_main(build, argv)")
        writer.line()
        writer.line()
        writer.line("if __name__ == '__main__':")
        with writer.indented():
            writer.line("sys.exit(main(sys.argv[1:]))")


def load_runtime_source(path: Path | None = None) -> str:
    """Read the runtime embedded at the top of generated programs.

    Args:
        path: Override for the runtime source file; defaults to mite.runtime.
    """
    source_path = path or Path(runtime_module.__file__)
    return source_path.read_text(encoding="utf-8")


def assemble(
    model: SiteModel,
    config: Mapping[str, Any] | None = None,
    data: Mapping[str, str] | None = None,
    runtime_source: str | None = None,
) -> GeneratedProgram:
    """Assemble a compiled site model into a generated program."""
    return Assembler(model, config, data, runtime_source).assemble()
