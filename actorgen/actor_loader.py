"""
Model assembler.

Provides:
- parse_package(): source text -> Package
- parse_file(): read a source file from disk and parse it
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .actor_ast import Package
from .actor_parser import (
    ActorBuilder, CompileError, TypeResolver,
    check_generated_names, parse_actors, parse_methods, parse_source,
)
from .config import DEFAULT_CONFIG, CompilerConfig
from .generate_actors import BASE_IMPORTS

logger = logging.getLogger(__name__)


def parse_package(
    source: str,
    module_name: str,
    filename: str = "",
    config: Optional[CompilerConfig] = None,
    search_path: Optional[List[str]] = None,
) -> Package:
    """
    Parse a source module and assemble its actor model.

    Args:
        source: Python source text
        module_name: Import path generated code uses to reach the source module
        filename: Name reported in errors and in the generated header
        config: Compiler settings (defaults when None)
        search_path: Extra directories to look for imported modules in

    Returns:
        Package with actors in declaration order
    """
    config = config or DEFAULT_CONFIG
    tree = parse_source(source, filename or "<unknown>")
    resolver = TypeResolver(tree, module_name, filename, search_path)

    imports = {config.runtime_module, module_name}
    actors: Dict[str, ActorBuilder] = {}

    # Methods can only bind to actors that are already in the table
    parse_actors(tree, resolver, actors, config)
    parse_methods(tree, source, resolver, imports, actors, config)
    built = [builder.build() for builder in actors.values()]
    check_generated_names(built, imports | set(BASE_IMPORTS), filename)

    package = Package(
        name=module_name,
        imports=imports,
        actors=built,
        runtime=config.runtime_module,
        source=Path(filename).name if filename else "",
    )

    logger.debug("package name: %s", package.name)
    for imp in sorted(package.imports):
        logger.debug("Import: %s", imp)
    for act in package.actors:
        logger.debug("Actor %s (%d methods, init: %s)", act.name, len(act.methods), act.init is not None)
    return package


def parse_file(path, module_name: Optional[str] = None, config: Optional[CompilerConfig] = None) -> Package:
    """Read a source file and parse it; module_name defaults to the file stem."""
    path = Path(path)
    try:
        source = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise CompileError(f"Unable to open input file {path}: {e}") from e

    return parse_package(source, module_name or path.stem, str(path), config, [str(path.parent.resolve())])
