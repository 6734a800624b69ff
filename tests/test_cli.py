import subprocess
from datetime import datetime

from click.testing import CliRunner

from mite.build import BuildResult
from mite.cli import _get_sections, _page_source, cli

SKIP_GIT = {"MITE_SKIP_GIT_INIT": "1"}


def scaffold(runner, target):
    result = runner.invoke(cli, ["new", str(target)], env=SKIP_GIT)
    assert result.exit_code == 0, result.output
    return target


def mock_prompts(monkeypatch, answers):
    responses = iter(answers)

    class MockQuestion:
        def ask(self):
            return next(responses)

    monkeypatch.setattr("mite.cli.questionary.select", lambda *args, **kwargs: MockQuestion())
    monkeypatch.setattr("mite.cli.questionary.text", lambda *args, **kwargs: MockQuestion())


def test_cli_new_scaffolds_project(tmp_path):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    for rel in [
        "index.md",
        "index.mite",
        "mite.yaml",
        "data/site.yaml",
        "_includes/head.mite",
        "_includes/nav.mite",
        "blog/blog.mite",
        "blog/hello-world/index.md",
    ]:
        assert (target / rel).exists(), rel

    # fails on non-empty directory
    result = runner.invoke(cli, ["new", str(target)], env=SKIP_GIT)
    assert result.exit_code != 0
    assert "non-empty" in result.output


def test_scaffolded_site_builds(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "Built 2 pages" in result.output
    assert "[rendering] blog/hello-world/index.html" in result.output

    home = (target / "index.html").read_text(encoding="utf-8")
    assert "<title>Home | My Mite Site</title>" in home
    assert '<a href="/blog/hello-world/">Hello World</a>' in home
    post = (target / "blog" / "hello-world" / "index.html").read_text(encoding="utf-8")
    assert "<h1>Hello World</h1>" in post
    assert '<time datetime="2024-01-15">' in post
    assert "Jane Doe" in post
    assert '<input type="checkbox" checked disabled>Create a site' in post
    assert not (target / "site.py").exists()

    result = runner.invoke(cli, ["build", "--incremental"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Up to date" in result.output or "Built 2 pages" in result.output


def test_cli_build_flags(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build", "--first-stage-only", "-q"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Wrote generated program" in result.output
    assert (target / "site.py").exists()
    assert not (target / "index.html").exists()

    result = runner.invoke(cli, ["build", "--keep-source", "-q"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "[rendering]" not in result.output
    assert (target / "site.py").exists()
    assert (target / "index.html").exists()


def test_cli_build_unknown_include_exits_nonzero(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    (target / "_includes" / "nav.mite").unlink()
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "Build failed" in result.output
    assert "nav" in result.output
    assert "index.mite" in result.output


def test_cli_build_missing_required_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "index.md" in result.output


def test_cli_build_and_serve_wiring(monkeypatch, tmp_path):
    runner = CliRunner()
    monkeypatch.chdir(tmp_path)
    seen = {}

    def fake_build_site(root, **kwargs):
        seen["build"] = kwargs
        return BuildResult(pages=[], templates=[], skipped=True, warnings=["careful"])

    class DummyServer:
        def __init__(self, root, http_port=None, ws_port=None):
            seen["port"] = http_port
            seen["ws_port"] = ws_port

        def start(self):
            seen["started"] = True

        def watch(self):
            seen["watched"] = True

    monkeypatch.setattr("mite.build.build_site", fake_build_site)
    monkeypatch.setattr("mite.server.DevServer", DummyServer)

    result = runner.invoke(cli, ["build", "--incremental", "--highlight"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Up to date" in result.output
    assert "Warning: careful" in result.output
    assert seen["build"]["incremental"] is True
    assert seen["build"]["highlight"] is True

    result = runner.invoke(cli, ["serve", "--port", "5050", "--ws-port", "5051"], catch_exceptions=False)
    assert result.exit_code == 0
    assert seen["started"]
    assert (seen["port"], seen["ws_port"]) == (5050, 5051)

    result = runner.invoke(cli, ["watch"], catch_exceptions=False)
    assert result.exit_code == 0
    assert seen["watched"]


def test_module_main_entrypoint():
    from mite.__main__ import main

    assert callable(main)


def test_main_invokes_cli(monkeypatch):
    import mite.cli as cli_mod

    called = {}
    monkeypatch.setattr(cli_mod, "cli", lambda: called.setdefault("ran", True))
    cli_mod.main()
    assert called["ran"]


def test_try_git_init(monkeypatch, tmp_path):
    from mite.cli import _try_git_init

    called = {}
    monkeypatch.delenv("MITE_SKIP_GIT_INIT", raising=False)
    monkeypatch.setattr("mite.cli.shutil.which", lambda cmd: "/usr/bin/git")

    def fake_run(cmd, cwd=None, check=None, capture_output=None):
        called["cmd"] = cmd
        called["cwd"] = cwd
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr("mite.cli.subprocess.run", fake_run)
    _try_git_init(tmp_path)
    assert called["cmd"] == ["/usr/bin/git", "init"]
    assert called["cwd"] == tmp_path


def test_try_git_init_skipped_or_failing(monkeypatch, tmp_path):
    from mite.cli import _try_git_init

    monkeypatch.setenv("MITE_SKIP_GIT_INIT", "1")
    monkeypatch.setattr("mite.cli.shutil.which", lambda cmd: 1 / 0)
    _try_git_init(tmp_path)  # returns before looking for git

    monkeypatch.delenv("MITE_SKIP_GIT_INIT")
    monkeypatch.setattr("mite.cli.shutil.which", lambda cmd: "/usr/bin/git")

    def fake_run(cmd, cwd=None, check=None, capture_output=None):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr("mite.cli.subprocess.run", fake_run)
    _try_git_init(tmp_path)  # failure is not fatal


def test_md_helper_functions(tmp_path):
    (tmp_path / "index.mite").write_text("", encoding="utf-8")
    (tmp_path / "blog").mkdir()
    (tmp_path / "blog" / "blog.mite").write_text("", encoding="utf-8")
    (tmp_path / "_includes").mkdir()
    (tmp_path / "_includes" / "nav.mite").write_text("", encoding="utf-8")
    assert _get_sections(tmp_path) == [". (root)", "blog"]

    source = _page_source("My Post", "blog")
    assert source.startswith("---\npage.title = 'My Post'\n")
    assert "site.collection('blog').append(page)" in source
    assert "# My Post" in source
    assert "collection" not in _page_source("About", ". (root)")


def test_md_command_no_project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["md"])
    assert result.exit_code != 0
    assert "No index.mite found" in result.output


def test_md_command_creates_page(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    monkeypatch.chdir(target)
    mock_prompts(monkeypatch, ["blog", "My Second Post"])

    result = runner.invoke(cli, ["md"], catch_exceptions=False)
    assert result.exit_code == 0
    created = target / "blog" / "my-second-post" / "index.md"
    assert created.exists()
    content = created.read_text(encoding="utf-8")
    assert "page.title = 'My Second Post'" in content
    assert f"page.date = '{datetime.now().strftime('%Y-%m-%d')}'" in content
    assert "# My Second Post" in content

    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Built 3 pages" in result.output


def test_md_command_duplicate_detection(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    monkeypatch.chdir(target)
    mock_prompts(monkeypatch, ["blog", "Hello World"])

    result = runner.invoke(cli, ["md"])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_md_command_cancelled(tmp_path, monkeypatch):
    runner = CliRunner()
    target = scaffold(runner, tmp_path / "mysite")
    monkeypatch.chdir(target)
    mock_prompts(monkeypatch, [None])

    result = runner.invoke(cli, ["md"])
    assert result.exit_code != 0
