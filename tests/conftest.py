from pathlib import Path

import pytest


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A small site: home page, one blog post, a layout per section and an include."""
    write(tmp_path / "mite.yaml", "title: Test Site\nurl: https://example.com\n")
    write(tmp_path / "data" / "site.yaml", "author: Ada\nnav:\n  - label: Home\n    url: /\n")
    write(
        tmp_path / "index.mite",
        "<html><title><? ESC(page.title) ?></title>\n"
        "<? INCLUDE(\"nav\") ?>\n"
        "<main><? CONTENT() ?></main>\n"
        "</html>\n",
    )
    write(
        tmp_path / "_includes" / "nav.mite",
        "<nav><a href=\"<? STR(site.get('nav.0.url')) ?>\"><? ESC(site.get('nav.0.label')) ?></a></nav>\n",
    )
    write(
        tmp_path / "blog" / "blog.mite",
        "<article><h1><? ESC(page.title) ?></h1><? CONTENT() ?></article>\n",
    )
    write(
        tmp_path / "index.md",
        "---\n"
        "page.title = 'Home & Away'\n"
        "---\n"
        "# Welcome\n"
        "\n"
        "<ul>\n"
        "<? for post in site.collection('blog').sorted_by_date(): ?>\n"
        "<li><a href=\"<? STR(post.url) ?>\"><? ESC(post.title) ?></a></li>\n"
        "<? end ?>\n"
        "</ul>\n",
    )
    write(
        tmp_path / "blog" / "first-post" / "index.md",
        "---\n"
        "page.title = 'First Post'\n"
        "page.date = '2023-05-01'\n"
        "site.collection('blog').append(page)\n"
        "---\n"
        "Written by <? ESC(site.get('author')) ?>.\n",
    )
    write(
        tmp_path / "blog" / "second-post" / "index.md",
        "---\n"
        "page.title = 'Second Post'\n"
        "page.date = '2024-01-01'\n"
        "site.collection('blog').append(page)\n"
        "---\n"
        "More *news*.\n",
    )
    return tmp_path
