"""Mite static site generator.

Mite compiles markdown pages and templates with embedded Python code into a
single generated program, then runs that program to write every page.

The main entry point is the CLI module, which provides commands for scaffolding
new projects, building sites, watching sources and running the development server.

Pipeline:
- discovery: finds pages and templates.
- markdown / transpiler: turn sources into instruction sequences.
- assembler: emits the generated program around the runtime.
- build: runs the whole pipeline and the generated program.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
