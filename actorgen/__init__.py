"""
actorgen: generate thread-backed actors from plain Python classes.

A class becomes an actor by declaring a field typed actorgen.actor.Actor.
The actorc command reads such a module and writes a companion module with
a mailbox, a worker thread and typed call wrappers for every actor.
"""

from .actor_ast import ActorInterface, Method, Package, Param
from .actor_loader import parse_file, parse_package
from .actor_parser import CompileError, ParseError, TypeCheckError
from .config import CompilerConfig, ConfigError, load_config
from .generate_actors import FormatError, format_source, generate_python

__version__ = "0.1.0"

__all__ = [
    # Model
    "ActorInterface",
    "Method",
    "Package",
    "Param",
    # Compiler
    "parse_file",
    "parse_package",
    "generate_python",
    "format_source",
    "CompilerConfig",
    "load_config",
    # Errors
    "CompileError",
    "ParseError",
    "TypeCheckError",
    "FormatError",
    "ConfigError",
]
