import os

from mite.discovery import discover
from mite.staleness import needs_rebuild, newest_mtime


def set_mtime(path, seconds):
    os.utime(path, (seconds, seconds))


def make_site(root):
    (root / "index.md").write_text("# Home", encoding="utf-8")
    (root / "index.mite").write_text("<? CONTENT() ?>", encoding="utf-8")
    (root / "about").mkdir()
    (root / "about" / "index.md").write_text("About", encoding="utf-8")
    return discover(root)


def write_outputs(model, seconds):
    for page in model.pages:
        page.output_file.write_text("<p>old</p>", encoding="utf-8")
        set_mtime(page.output_file, seconds)


def test_missing_output_needs_rebuild(tmp_path):
    model = make_site(tmp_path)
    assert needs_rebuild(model.pages, model.templates.values())


def test_up_to_date_site(tmp_path):
    model = make_site(tmp_path)
    for path in [tmp_path / "index.md", tmp_path / "index.mite", tmp_path / "about" / "index.md"]:
        set_mtime(path, 1_000_000)
    write_outputs(model, 2_000_000)
    assert not needs_rebuild(model.pages, model.templates.values())


def test_newer_source_or_template_forces_rebuild(tmp_path):
    model = make_site(tmp_path)
    for path in [tmp_path / "index.md", tmp_path / "index.mite", tmp_path / "about" / "index.md"]:
        set_mtime(path, 1_000_000)
    write_outputs(model, 2_000_000)

    set_mtime(tmp_path / "about" / "index.md", 3_000_000)
    assert needs_rebuild(model.pages, model.templates.values())

    set_mtime(tmp_path / "about" / "index.md", 1_000_000)
    set_mtime(tmp_path / "index.mite", 3_000_000)
    assert needs_rebuild(model.pages, model.templates.values())


def test_extra_inputs(tmp_path):
    model = make_site(tmp_path)
    for path in [tmp_path / "index.md", tmp_path / "index.mite", tmp_path / "about" / "index.md"]:
        set_mtime(path, 1_000_000)
    write_outputs(model, 2_000_000)
    config = tmp_path / "mite.yaml"
    config.write_text("title: x", encoding="utf-8")
    set_mtime(config, 3_000_000)
    assert needs_rebuild(model.pages, model.templates.values(), [config])
    # missing extra inputs are ignored
    assert not needs_rebuild(model.pages, model.templates.values(), [tmp_path / "nope.yaml"])


def test_newest_mtime(tmp_path):
    assert newest_mtime([]) == 0
    a = tmp_path / "a"
    a.write_text("a", encoding="utf-8")
    set_mtime(a, 1_000_000)
    assert newest_mtime([a, tmp_path / "missing"]) == 1_000_000 * 10**9
