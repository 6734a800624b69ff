import io
from datetime import date

import pytest

from mite.runtime import (
    INCLUDE,
    LAYOUT,
    Collection,
    DataMap,
    Entry,
    OutputBuffer,
    PageNotFoundError,
    RenderError,
    SiteGlobal,
    SitePage,
    TemplateError,
    TemplateHandle,
    TemplateNotFoundError,
    escape_html,
    intrinsics,
    parse_date,
    render_page,
    run_main,
    sort_by_date,
    write_output,
)


def test_escape_html():
    assert escape_html("<a href=\"x\">Tom & Jerry's</a>") == (
        "&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&#39;s&lt;/a&gt;"
    )


def test_parse_date_formats():
    assert parse_date("2024-01-15") == date(2024, 1, 15)
    assert parse_date("2024-01-15T10:00:00") == date(2024, 1, 15)
    assert parse_date("01/02/2024") == date(2024, 2, 1)
    assert parse_date(date(2020, 5, 1)) == date(2020, 5, 1)
    assert parse_date("2024-13-40") is None
    assert parse_date("") is None
    assert parse_date("yesterday") is None
    assert parse_date(None) is None


def test_sort_by_date_newest_first():
    older = Entry(title="old", date="2023-05-01")
    newer = Entry(title="new", date="2024-01-01")
    assert sort_by_date([older, newer]) == [newer, older]

    dmy_2023 = Entry(title="a", date="01/02/2023")
    dmy_2024 = Entry(title="b", date="01/02/2024")
    assert sort_by_date([dmy_2023, dmy_2024]) == [dmy_2024, dmy_2023]


def test_sort_by_date_stable_and_undated_last():
    undated = Entry(title="undated")
    first = Entry(title="first", date="2024-01-01")
    second = Entry(title="second", date="01/01/2024")
    assert sort_by_date([undated, first, second]) == [first, second, undated]
    assert sort_by_date([undated, second, first], reverse=False) == [second, first, undated]


def test_collection_helpers():
    posts = Collection("posts")
    posts.add(title="a", date="2022-01-01")
    posts.add(title="b", date="2024-01-01")
    posts.add(title="c", date="2023-01-01")
    assert [p.title for p in posts.sorted_by_date()] == ["b", "c", "a"]
    latest = posts.latest(2)
    assert latest.name == "posts"
    assert [p.title for p in latest] == ["b", "c"]


def test_data_map_accessors():
    data = DataMap()
    data.set("count", 3)
    data.set("empty", None)
    assert data.get("count") == "3"
    assert data.get("missing") is None
    assert data.get("missing", "x") == "x"
    assert data.has("empty")
    assert data.equals("count", 3)
    assert not data.equals("missing", "")
    data.set("count", "4")
    assert data.get("count") == "4"


def test_page_date_is_parsed():
    page = SitePage(name="p", title="P", input_path="p/index.md", output_path="p/index.html")
    page.date = "2024-03-02"
    assert page.date == "2024-03-02"
    assert page.when == date(2024, 3, 2)


def test_output_buffer_reuses_storage():
    out = OutputBuffer()
    out.write(b"hello world")
    assert out.getvalue() == b"hello world"
    capacity = out.capacity
    out.reset()
    assert len(out) == 0
    assert out.capacity == capacity
    out.write(b"hi")
    assert out.getvalue() == b"hi"
    assert out.capacity == capacity
    stream = io.BytesIO()
    out.write_to(stream)
    assert stream.getvalue() == b"hi"


def _layout(out, page, content):
    OUT_HTML, INT, STR, RAWSTR, SV, ESC, CONTENT, INCLUDE = intrinsics(out, page, content)
    OUT_HTML(b"<main>")
    INCLUDE("nav")
    CONTENT()
    OUT_HTML(b"</main>")


def _nav(out, page, content):
    OUT_HTML, INT, STR, RAWSTR, SV, ESC, CONTENT, INCLUDE = intrinsics(out, page, content)
    OUT_HTML(b"<nav>")
    INT(len(page.site.pages))
    OUT_HTML(b"</nav>")


def _content(out, page, content):
    OUT_HTML, INT, STR, RAWSTR, SV, ESC, CONTENT, INCLUDE = intrinsics(out, page, content)
    ESC(page.title)
    STR(None)
    RAWSTR("<br>")
    SV(memoryview(b"!"))


def make_site(layout="index", content=_content):
    site = SiteGlobal(title="Site")
    site.add_template("index", _layout, LAYOUT)
    site.add_template("nav", _nav, INCLUDE)
    page = SitePage(
        name="index",
        title="A & B",
        input_path="index.md",
        output_path="index.html",
        layout=layout,
        content=content,
    )
    site.add_page(page)
    return site, page


def test_render_page_through_layout():
    site, page = make_site()
    out = OutputBuffer()
    render_page(site, page, out)
    assert out.getvalue() == b"<main><nav>1</nav>A &amp; B<br>!</main>"
    assert site.page_by_input("index.md") is page


def test_render_page_unknown_layout_falls_back_to_content():
    site, page = make_site(layout="missing")
    out = OutputBuffer()
    render_page(site, page, out)
    assert out.getvalue() == b"A &amp; B<br>!"
    assert any("missing" in w for w in site.warnings)

    site, page = make_site(layout=None)
    out = OutputBuffer()
    render_page(site, page, out)
    assert out.getvalue() == b"A &amp; B<br>!"
    assert site.warnings == []


def test_include_cannot_be_a_layout():
    site, page = make_site(layout="nav")
    with pytest.raises(TemplateError):
        render_page(site, page, OutputBuffer())


def test_layout_cannot_be_included():
    def includes_layout(out, page, content):
        intrinsics(out, page, content)[7]("index")

    site, page = make_site(layout=None, content=includes_layout)
    with pytest.raises(TemplateError):
        render_page(site, page, OutputBuffer())


def test_unknown_include_is_reported():
    def includes_missing(out, page, content):
        intrinsics(out, page, content)[7]("sidebar")

    site, page = make_site(layout=None, content=includes_missing)
    with pytest.raises(TemplateNotFoundError) as excinfo:
        render_page(site, page, OutputBuffer())
    assert excinfo.value.name == "sidebar"


def test_content_cannot_recurse():
    def recursive(out, page, content):
        intrinsics(out, page, content)[6]()

    site, page = make_site(content=recursive)
    with pytest.raises(RenderError):
        render_page(site, page, OutputBuffer())
    assert page._in_content is False


def test_registry_lookups_fail_loudly():
    site = SiteGlobal()
    with pytest.raises(TemplateNotFoundError):
        site.lookup_template("nope")
    with pytest.raises(PageNotFoundError):
        site.page_by_input("nope.md")
    with pytest.raises(TemplateError):
        TemplateHandle("x", _nav, "partial")
    assert site.collection("posts") is site.collection("posts")


def test_write_output(tmp_path):
    page = SitePage(name="p", title="P", input_path="a/b/index.md", output_path="a/b/index.html")
    out = OutputBuffer()
    out.write(b"<p>hi</p>")
    target = write_output(tmp_path, page, out)
    assert target == tmp_path / "a" / "b" / "index.html"
    assert target.read_bytes() == b"<p>hi</p>"


def test_run_main_reports_status(capsys):
    site = SiteGlobal()
    site.warn("careful")
    assert run_main(lambda root: site, ["."]) == 0
    captured = capsys.readouterr()
    assert "[done]" in captured.out
    assert "[warning] careful" in captured.err

    def failing(root):
        raise TemplateNotFoundError("nav")

    assert run_main(failing, []) == 1
    assert "nav" in capsys.readouterr().err
