"""Markdown to HTML rendering for Mite.

A small line-oriented renderer: a block state machine walks the document
with a cursor that only moves forward, and an inline parser handles
emphasis, code, math, links and embedded ``<? ... ?>`` code spans within a
line. Front matter is split off into its own stream so the transpiler can
turn it into code.

Key pieces:
- render_markdown: Render one document into a RenderedMarkdown.
- MarkdownRenderer: The block state machine.
- parse_inline: The inline parser.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pygments import highlight as pygments_highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .runtime import MiteError, escape_html

CODE_OPEN = "<?"
CODE_CLOSE = "?>"
FENCE = "```"
FRONT_MATTER_DELIMITER = "---"
FRONT_MATTER_FENCE_TAG = "mite"
VIDEO_EXTENSIONS = (".mp4", ".webm")

LIST_ITEM_RE = re.compile(r"[-*] ")
IMAGE_RE = re.compile(r"!\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]*)\)\s*$")
OPEN_TAG_RE = re.compile(r"<(?P<tag>[A-Za-z][A-Za-z0-9-]*)")

# Emphasis markers in priority order: (opener, closer, open tag, close tag).
EMPHASIS_MARKERS = (
    ("***", "***", "<strong><i>", "</i></strong>"),
    ("**_", "_**", "<strong><i>", "</i></strong>"),
    ("_**", "**_", "<strong><i>", "</i></strong>"),
    ("**", "**", "<strong>", "</strong>"),
    ("*", "*", "<i>", "</i>"),
    ("_", "_", "<i>", "</i>"),
)


class MarkdownError(MiteError):
    """The markdown source cannot be rendered."""


@dataclass
class RenderedMarkdown:
    """Output of the markdown renderer.

    Attributes:
        body: HTML body, still containing embedded code spans.
        front_matter: Front matter wrapped in ``<? ... ?>``, or "" if absent.
    """

    body: str
    front_matter: str

    @property
    def has_front_matter(self) -> bool:
        return bool(self.front_matter)


def render_markdown(text: str, highlight: bool = False) -> RenderedMarkdown:
    """Render a markdown document.

    Args:
        text: Markdown source. Must not contain NUL characters.
        highlight: Highlight fenced code with Pygments when a language is given.

    Returns:
        RenderedMarkdown with the body and the extracted front matter.
    """
    return MarkdownRenderer(highlight=highlight).render(text)


def _line_end(text: str, pos: int) -> int:
    end = text.find("\n", pos)
    return len(text) if end < 0 else end


def _find_closer(text: str, closer: str, start: int, stop: int) -> int:
    """Find a closing marker in ``text[start:stop]`` not preceded by whitespace."""
    idx = text.find(closer, start, stop)
    while idx >= 0:
        if idx > start and not text[idx - 1].isspace():
            if closer != "_" or idx + 1 >= stop or not text[idx + 1].isalnum():
                return idx
        idx = text.find(closer, idx + 1, stop)
    return -1


def _attribute(value: str) -> str:
    if CODE_OPEN in value:
        return value
    return escape_html(value)


def parse_inline(text: str, pos: int = 0) -> tuple[str, int]:
    """Render inline markdown starting at ``pos`` up to the end of the line.

    Embedded code spans are copied verbatim and may run past the end of the
    line; parsing then continues to the end of the line the span closes on.

    Returns:
        Tuple of (HTML, position of the terminating newline or end of text).
    """
    out: list[str] = []
    p = pos
    while p < len(text) and text[p] != "\n":
        stop = _line_end(text, p)

        if text.startswith(CODE_OPEN, p):
            end = text.find(CODE_CLOSE, p + len(CODE_OPEN))
            end = len(text) if end < 0 else end + len(CODE_CLOSE)
            out.append(text[p:end])
            p = end
            continue

        if text.startswith("\\(", p):
            end = text.find("\\)", p + 2, stop)
            if end >= 0:
                out.append(text[p : end + 2])
                p = end + 2
                continue

        matched = _parse_emphasis(text, p, stop)
        if matched is not None:
            html, p = matched
            out.append(html)
            continue

        if text[p] == "`":
            end = text.find("`", p + 1, stop)
            if end >= 0:
                out.append(f"<code>{escape_html(text[p + 1 : end])}</code>")
                p = end + 1
                continue

        if text[p] == "[":
            matched = _parse_link(text, p, stop)
            if matched is not None:
                html, p = matched
                out.append(html)
                continue

        out.append(escape_html(text[p]))
        p += 1
    return "".join(out), p


def _parse_emphasis(text: str, p: int, stop: int) -> tuple[str, int] | None:
    for opener, closer, open_tag, close_tag in EMPHASIS_MARKERS:
        if not text.startswith(opener, p):
            continue
        start = p + len(opener)
        if start >= stop or text[start].isspace():
            return None
        if opener == "_" and p > 0 and text[p - 1].isalnum():
            return None
        end = _find_closer(text, closer, start, stop)
        if end < 0:
            continue
        inner, _ = parse_inline(text[start:end])
        return f"{open_tag}{inner}{close_tag}", end + len(closer)
    return None


def _find_link_end(text: str, start: int, stop: int) -> int:
    """Find the closing parenthesis of a link URL, skipping embedded code spans."""
    pos = start
    while pos < stop:
        if text.startswith(CODE_OPEN, pos):
            close = text.find(CODE_CLOSE, pos + len(CODE_OPEN), stop)
            if close < 0:
                return -1
            pos = close + len(CODE_CLOSE)
            continue
        if text[pos] == ")":
            return pos
        pos += 1
    return -1


def _parse_link(text: str, p: int, stop: int) -> tuple[str, int] | None:
    end_text = text.find("]", p + 1, stop)
    if end_text < 0 or not text.startswith("(", end_text + 1):
        return None
    end_url = _find_link_end(text, end_text + 2, stop)
    if end_url < 0:
        return None
    url = text[end_text + 2 : end_url]
    label, _ = parse_inline(text[p + 1 : end_text])
    return f'<a href="{_attribute(url)}">{label}</a>', end_url + 1


class MarkdownRenderer:
    """Block-level state machine.

    Tracks whether a paragraph or a list is open; every other block is
    emitted in one step. The cursor ``_pos`` only moves forward.
    """

    def __init__(self, highlight: bool = False):
        self.highlight = highlight
        self._text = ""
        self._pos = 0
        self._out: list[str] = []
        self._paragraph = False
        self._list = False

    def render(self, text: str) -> RenderedMarkdown:
        if "\0" in text:
            raise MarkdownError("markdown source contains a NUL character")
        self._text = text.replace("\r\n", "\n")
        self._pos = 0
        self._out = []
        self._paragraph = False
        self._list = False

        front_matter = self._front_matter()
        while self._pos < len(self._text):
            self._block()
        self._close_blocks()
        return RenderedMarkdown(body="".join(self._out), front_matter=front_matter)

    def _front_matter(self) -> str:
        text = self._text
        first_end = _line_end(text, 0)
        first = text[:first_end].rstrip()
        if first == FRONT_MATTER_DELIMITER:
            closing = (FRONT_MATTER_DELIMITER,)
        elif first == FENCE + FRONT_MATTER_FENCE_TAG:
            closing = (FENCE,)
        else:
            return ""

        pos = first_end + 1
        while pos <= len(text):
            end = _line_end(text, pos)
            if text[pos:end].rstrip() in closing:
                code = text[first_end + 1 : pos]
                self._pos = end + 1
                return f"{CODE_OPEN}\n{code}\n{CODE_CLOSE}\n"
            if end >= len(text):
                break
            pos = end + 1
        return ""

    def _advance(self, pos: int) -> None:
        self._pos = pos + 1

    def _close_paragraph(self) -> None:
        if self._paragraph:
            self._out.append("</p>\n")
            self._paragraph = False

    def _close_list(self) -> None:
        if self._list:
            self._out.append("</ul>\n")
            self._list = False

    def _close_blocks(self) -> None:
        self._close_paragraph()
        self._close_list()

    def _block(self) -> None:
        text = self._text
        end = _line_end(text, self._pos)
        raw = text[self._pos : end]
        line = raw.lstrip(" \t")
        start = end - len(line)

        if not line.strip():
            self._close_blocks()
            self._advance(end)
        elif line.startswith(FENCE):
            self._fence(line, end)
        elif line.startswith(FRONT_MATTER_DELIMITER):
            self._close_blocks()
            self._out.append("<hr>\n")
            self._advance(end)
        elif line.startswith("#"):
            self._heading(line, start)
        elif LIST_ITEM_RE.match(line):
            self._list_item(start)
        elif line.startswith("> ") or line.rstrip() == ">":
            self._close_blocks()
            html, stop = parse_inline(text, min(start + 2, end))
            self._out.append(f"<blockquote>{html}</blockquote>\n")
            self._advance(stop)
        elif IMAGE_RE.match(line):
            self._close_blocks()
            self._figure(IMAGE_RE.match(line))
            self._advance(end)
        elif line.startswith("<"):
            self._close_blocks()
            self._raw_markup(line, start, end)
        else:
            self._paragraph_line(start)

    def _fence(self, line: str, end: int) -> None:
        self._close_blocks()
        language = line[len(FENCE) :].strip()
        text = self._text
        body_start = end + 1
        pos = body_start
        close_end = len(text)
        body_end = len(text)
        while pos < len(text):
            line_end = _line_end(text, pos)
            if text[pos:line_end].lstrip(" \t").startswith(FENCE):
                body_end = pos
                close_end = line_end
                break
            pos = line_end + 1
        code = text[body_start:body_end] if body_start < len(text) else ""
        self._out.append(self._code_block(code, language))
        self._advance(close_end)

    def _code_block(self, code: str, language: str) -> str:
        if self.highlight and language:
            try:
                lexer = get_lexer_by_name(language, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return pygments_highlight(code, lexer, formatter)
        lang_class = f' class="language-{escape_html(language)}"' if language else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"

    def _heading(self, line: str, start: int) -> None:
        self._close_blocks()
        level = len(line) - len(line.lstrip("#"))
        content = start + level
        while content < len(self._text) and self._text[content] in " \t":
            content += 1
        html, stop = parse_inline(self._text, content)
        self._out.append(f"<h{level}>{html}</h{level}>\n")
        self._advance(stop)

    def _list_item(self, start: int) -> None:
        self._close_paragraph()
        if not self._list:
            self._out.append("<ul>")
            self._list = True
        text = self._text
        content = start + 2
        prefix = ""
        if text.startswith("[ ] ", content):
            prefix = '<input type="checkbox" disabled>'
            content += 4
        elif text.startswith(("[x] ", "[X] "), content):
            prefix = '<input type="checkbox" checked disabled>'
            content += 4
        html, stop = parse_inline(text, content)
        self._out.append(f"<li>{prefix}{html}</li>")
        self._advance(stop)

    def _figure(self, match: re.Match) -> None:
        alt = escape_html(match.group("alt"))
        url = _attribute(match.group("url"))
        caption = f"<figcaption>{alt}</figcaption>" if alt else ""
        if match.group("url").lower().endswith(VIDEO_EXTENSIONS):
            media = f'<video controls src="{url}"></video>'
        else:
            media = f'<img loading="lazy" src="{url}" alt="{alt}">'
        self._out.append(f"<figure>{media}{caption}</figure>\n")

    def _raw_markup(self, line: str, start: int, end: int) -> None:
        text = self._text
        if line.startswith(CODE_OPEN):
            close = text.find(CODE_CLOSE, start + len(CODE_OPEN))
            if close < 0:
                self._out.append(text[start:])
                self._pos = len(text)
                return
            after = close + len(CODE_CLOSE)
        else:
            match = OPEN_TAG_RE.match(line)
            closing = f"</{match.group('tag')}>" if match else ""
            close = text.find(closing, start, end) if closing else -1
            if close < 0:
                self._out.append(text[start:end] + "\n")
                self._advance(end)
                return
            after = close + len(closing)
        html, stop = parse_inline(text, after)
        self._out.append(text[start:after] + html + "\n")
        self._advance(stop)

    def _paragraph_line(self, start: int) -> None:
        self._close_list()
        text = self._text
        html, stop = parse_inline(text, start)
        hard_break = text[start:stop].endswith("  ")
        if hard_break:
            html = html.rstrip(" ")
        if not self._paragraph:
            self._out.append("<p>")
            self._paragraph = True
        elif not self._out[-1].endswith("<br>\n"):
            self._out.append("\n")
        self._out.append(html)
        if hard_break:
            self._out.append("<br>\n")
        self._advance(stop)
