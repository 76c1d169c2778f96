#!/usr/bin/env python3
"""
Generate actor scaffolding for the actor classes in a Python module.

Usage:
    actorc -i <source.py> [-o <output.py>] [-m <module>] [-c <config.yaml>] [-v]

Example:
    actorc -i examples/calc.py -o examples/calc_actors.py -m examples.calc

Exit codes:
    1  no input file given
    2  input and output are the same file
    3  the input could not be parsed or resolved
    4  the generated code failed formatting
    5  the output file could not be created
    6  the config file could not be loaded
"""

import argparse
import logging
import sys

from .actor_loader import parse_file
from .actor_parser import CompileError
from .config import ConfigError, load_config
from .generate_actors import FormatError, format_source, generate_python

EXIT_NO_INPUT = 1
EXIT_SAME_FILE = 2
EXIT_COMPILE = 3
EXIT_FORMAT = 4
EXIT_OUTPUT = 5
EXIT_CONFIG = 6

logger = logging.getLogger("actorgen")


def configure_logging(verbose: bool):
    """Trace to stderr when verbose, discard diagnostics otherwise."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="actorc: %(asctime)s %(message)s",
        )
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.CRITICAL + 1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="actorc",
        description="Generate actor scaffolding from annotated Python classes"
    )
    parser.add_argument("-i", "--input", default="", help="input file")
    parser.add_argument("-o", "--output", default="", help="output file (default: stdout)")
    parser.add_argument("-m", "--module", default=None,
                        help="import path of the input module (default: input file stem)")
    parser.add_argument("-c", "--config", default=None, help="YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="verbose console output (for debugging)")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    logger.debug("input file: %s", args.input)
    logger.debug("output file: %s", args.output)

    if not args.input:
        print("No input file specified", file=sys.stderr)
        sys.exit(EXIT_NO_INPUT)

    if args.output == args.input:
        print("Input file and output file are the same", file=sys.stderr)
        sys.exit(EXIT_SAME_FILE)

    config = None
    if args.config:
        try:
            config = load_config(args.config)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG)

    try:
        package = parse_file(args.input, args.module, config)
    except CompileError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_COMPILE)

    try:
        src = format_source(generate_python(package))
    except FormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FORMAT)

    if not args.output:
        sys.stdout.write(src)
        return

    try:
        with open(args.output, "w") as out:
            out.write(src)
    except OSError:
        print(f"Unable to create output file {args.output}", file=sys.stderr)
        sys.exit(EXIT_OUTPUT)
    logger.debug("Generated: %s", args.output)


if __name__ == "__main__":
    main()
