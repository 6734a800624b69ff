"""Command-line interface for Mite.

This module defines the CLI commands using Click framework.

Commands:
- new: Scaffold a new Mite project.
- build: Build the site (optionally incremental, first stage only, keeping the generated program).
- watch: Rebuild incrementally whenever a source changes.
- serve: Run development server with live reload.
- md: Create a new page interactively.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import click
import questionary

from . import __version__
from .utils import TEMPLATE_SUFFIX, slugify, titleize

# Path to the scaffold copied by `mite new`
_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


@click.group()
@click.version_option(version=__version__, prog_name="mite")
def cli():
    """Mite static site generator."""


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Mite project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Mite site created at {target}")


@cli.command()
@click.option("--incremental", is_flag=True, help="Skip the build when every page is up to date")
@click.option(
    "--first-stage-only",
    is_flag=True,
    help="Write the generated program without running it",
)
@click.option("--keep-source", is_flag=True, help="Keep the generated program after building")
@click.option(
    "--runtime-source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Runtime source to embed in the generated program",
)
@click.option("--highlight/--no-highlight", default=None, help="Highlight fenced code with Pygments")
@click.option("-q", "--quiet", is_flag=True, help="Do not list rendered pages")
def build(
    incremental: bool,
    first_stage_only: bool,
    keep_source: bool,
    runtime_source: Path | None,
    highlight: bool | None,
    quiet: bool,
):
    """Build the site next to its sources."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(
            project_root,
            incremental=incremental,
            first_stage_only=first_stage_only,
            keep_source=keep_source,
            runtime_source=runtime_source,
            highlight=highlight,
            echo=None if quiet else click.echo,
        )
    except BuildError as exc:
        _echo_build_error(project_root, exc)
        raise SystemExit(1) from None

    for warning in result.warnings:
        click.echo(click.style(f"Warning: {warning}", fg="yellow"), err=True)
    if result.skipped:
        click.echo("Up to date; nothing to build.")
    elif first_stage_only:
        click.echo(f"Wrote generated program to {result.generated_path}")
    else:
        click.echo(f"Built {len(result.pages)} pages")


def _echo_build_error(project_root: Path, exc) -> None:
    """Display a user-friendly build error."""
    try:
        rel_path = exc.source_path.relative_to(project_root)
    except ValueError:
        rel_path = exc.source_path
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


@cli.command()
def watch():
    """Rebuild incrementally whenever a source changes."""
    project_root = Path.cwd()
    from .server import DevServer

    DevServer(project_root).watch()


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides mite.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides mite.yaml ws_port)",
)
def serve(port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .server import DevServer

    server = DevServer(project_root, http_port=port, ws_port=ws_port)
    server.start()


@cli.command()
def md():
    """Create a new page interactively."""
    project_root = Path.cwd()
    if not (project_root / "index.mite").exists():
        raise click.ClickException(
            "No index.mite found. Run this command from a Mite project root."
        )

    sections = _get_sections(project_root)
    section = questionary.select(
        "Select section:",
        choices=sections,
        style=_questionary_style(),
    ).ask()
    if section is None:
        raise click.Abort()

    name = questionary.text(
        "Page name:",
        validate=lambda x: len(x.strip()) > 0 or "Page name cannot be empty",
        style=_questionary_style(),
    ).ask()
    if name is None:
        raise click.Abort()

    name = name.strip()
    section_dir = project_root if section == ". (root)" else project_root / section
    target_dir = section_dir / slugify(name)
    target_path = target_dir / "index.md"
    if target_dir.exists() and any(target_dir.glob("*.md")):
        raise click.ClickException(
            f"Page already exists: {target_dir.relative_to(project_root)}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(_page_source(titleize(name), section), encoding="utf-8")
    click.echo(f"Created {target_path.relative_to(project_root)}")


def _get_sections(root: Path) -> list[str]:
    """Get the directories holding a layout, root first.

    Excludes internal directories (starting with _ or .).
    """
    sections = set()
    for path in root.rglob(f"*{TEMPLATE_SUFFIX}"):
        rel = path.parent.relative_to(root)
        if rel == Path(".") or any(p.startswith(("_", ".")) for p in rel.parts):
            continue
        sections.add(rel.as_posix())
    return [". (root)", *sorted(sections)]


def _page_source(title: str, section: str) -> str:
    """Return the markdown source of a new page with front matter."""
    lines = [
        "---",
        f"page.title = {title!r}",
        f"page.date = {datetime.now().strftime('%Y-%m-%d')!r}",
    ]
    if section != ". (root)":
        lines.append(f"site.collection({Path(section).name!r}).append(page)")
    lines.extend(["---", f"# {title}", "", ""])
    return "\n".join(lines)


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Mite project.

    Args:
        root: Root directory for the new project.
    """
    for src_path in _SCAFFOLD_DIR.rglob("*"):
        if src_path.is_dir():
            continue
        rel_path = src_path.relative_to(_SCAFFOLD_DIR)
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("MITE_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run(
            [git_bin, "init"],
            cwd=root,
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError):
        # Non-fatal: user can run git init manually
        pass
