"""Compiler and copy collaborators for build steps."""

from devloop.compilers.base import Compiler
from devloop.compilers.cli_compiler import CliCompiler, parse_location
from devloop.compilers.files import Copier, copy_file, write_artifact

__all__ = [
    "CliCompiler",
    "Compiler",
    "Copier",
    "copy_file",
    "parse_location",
    "write_artifact",
]
