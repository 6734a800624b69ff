"""Site building functionality for Mite.

This module drives one build: it loads configuration and data, discovers
pages and templates, checks staleness in incremental mode, compiles every
source, assembles the generated program and runs it in-process.

Key functions:
- build_site: Main function to build the entire site.
- load_config: Loads site configuration from mite.yaml.
- load_data: Loads global key/value data from YAML files in data/.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .assembler import AssemblyError, GeneratedProgram, assemble, load_runtime_source
from .discovery import discover, missing_required_files
from .model import CompileError, Document, Template
from .runtime import MiteError
from .staleness import needs_rebuild
from .utils import flatten_data

CONFIG_FILE = "mite.yaml"
DATA_DIR = "data"


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


DEFAULT_CONFIG = {
    "title": "",
    "description": "",
    "url": "",
    "favicon": "",
    "generated_source": "site.py",
    "highlight": False,
    "port": 4000,
    "ws_port": 4001,
}


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: Every discovered page.
        templates: Every discovered layout and include.
        generated_path: Kept generated program, or None once removed.
        warnings: Advisory messages from compilation and rendering.
        skipped: True when an incremental build found nothing stale.
        site: Global state returned by the generated program, if it ran.
    """

    pages: list[Document]
    templates: list[Template]
    generated_path: Path | None = None
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False
    site: Any = None


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from mite.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / CONFIG_FILE
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
    return config


def data_files(project_root: Path) -> list[Path]:
    data_dir = project_root / DATA_DIR
    if not data_dir.exists():
        return []
    return sorted(data_dir.glob("*.yaml"))


def load_data(project_root: Path) -> dict[str, str]:
    """Load global data from YAML files in the data directory.

    ``site.yaml`` is merged at the top level, every other file is stored
    under its stem. Nested values are flattened to dotted keys.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary of string keys to string values.
    """
    data: dict[str, Any] = {}
    for path in data_files(project_root):
        with open(path, encoding="utf-8") as f:
            payload = yaml.safe_load(f)
        if payload is None:
            continue
        if path.name == "site.yaml" and isinstance(payload, dict):
            data.update(payload)
        else:
            data[path.stem] = payload
    return flatten_data(data)


def build_site(
    project_root: Path,
    incremental: bool = False,
    first_stage_only: bool = False,
    keep_source: bool = False,
    runtime_source: Path | None = None,
    highlight: bool | None = None,
    echo: Callable[[str], None] | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        incremental: Skip the build when no output is stale.
        first_stage_only: Write the generated program without running it.
        keep_source: Keep the generated program after a successful run.
        runtime_source: Override for the runtime embedded in the program.
        highlight: Override the ``highlight`` config value.
        echo: Receives progress lines from the generated program.

    Returns:
        BuildResult describing the pages, templates and warnings.

    Raises:
        BuildError: On any fatal condition, naming the offending file.
    """
    config = load_config(project_root)
    missing = missing_required_files(project_root)
    if missing:
        raise BuildError(project_root / missing[0], f"missing required file '{missing[0]}'")

    try:
        model = discover(project_root)
    except MiteError as exc:
        raise BuildError(project_root, str(exc), exc) from exc
    result = BuildResult(
        pages=model.pages,
        templates=list(model.templates.values()),
        warnings=model.warnings,
    )

    shared_inputs = [project_root / CONFIG_FILE, *data_files(project_root)]
    if incremental and not needs_rebuild(model.pages, model.templates.values(), shared_inputs):
        result.skipped = True
        return result

    use_highlight = config.get("highlight") if highlight is None else highlight
    try:
        model.compile(highlight=bool(use_highlight))
    except CompileError as exc:
        raise BuildError(
            project_root / exc.input_path, _format_error_message(exc.error), exc.error
        ) from exc

    try:
        data = load_data(project_root)
    except yaml.YAMLError as exc:
        raise BuildError(project_root / DATA_DIR, f"Invalid data file: {exc}", exc) from exc

    try:
        runtime_text = load_runtime_source(runtime_source)
    except OSError as exc:
        raise BuildError(Path(runtime_source or "runtime"), _format_error_message(exc), exc) from exc

    try:
        program = assemble(model, config, data, runtime_text)
    except AssemblyError as exc:
        raise BuildError(project_root / exc.input_path, exc.message, exc) from exc

    generated_path = project_root / str(config.get("generated_source") or "site.py")
    try:
        program.write(generated_path)
    except OSError as exc:
        raise BuildError(generated_path, _format_error_message(exc), exc) from exc
    result.generated_path = generated_path
    if first_stage_only:
        return result

    site = _run_program(program, generated_path, project_root, echo)
    result.site = site
    result.warnings.extend(site.warnings)
    if not keep_source:
        generated_path.unlink()
        result.generated_path = None
    return result


def _quiet(message: str) -> None:
    """Discard progress output."""


def _run_program(
    program: GeneratedProgram,
    generated_path: Path,
    project_root: Path,
    echo: Callable[[str], None] | None,
) -> Any:
    """Compile and execute the generated program in a fresh namespace.

    Returns:
        The global state object built by the program.
    """
    try:
        code = compile(program.source, str(generated_path), "exec")
    except SyntaxError as exc:
        raise BuildError(
            _origin_path(project_root, program.origin_of(exc.lineno or 0), generated_path),
            f"Syntax error in embedded code (generated line {exc.lineno}): {exc.msg}",
            exc,
        ) from exc

    namespace: dict[str, Any] = {"__name__": "mite_site"}
    try:
        exec(code, namespace)
        return namespace["build"](str(project_root), echo or _quiet)
    except Exception as exc:
        origin = None
        for frame in reversed(traceback.extract_tb(exc.__traceback__)):
            if frame.filename == str(generated_path):
                origin = program.origin_of(frame.lineno or 0)
                if origin and origin != "<driver>":
                    break
        raise BuildError(
            _origin_path(project_root, origin, generated_path),
            _format_error_message(exc),
            exc,
        ) from exc


def _origin_path(project_root: Path, origin: str | None, generated_path: Path) -> Path:
    if origin is None or origin == "<driver>":
        return generated_path
    return project_root / origin


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if isinstance(exc, OSError) and exc.strerror:
        target = exc.filename or ""
        return f"{exc.strerror}: {target}" if target else exc.strerror
    if error_type == "NameError":
        return f"Undefined name: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"
