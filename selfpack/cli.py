"""Command line interface for selfpack."""

import argparse
import logging
import pathlib
import sys

from selfpack.builder import ArchiveReadOnlyError, BuildError, BuildResult, build_archive, read_manifest
from selfpack.config import (
    DEFAULT_INTERPRETER,
    READONLY_ENV_VAR,
    BuildConfig,
    ConfigError,
    resolve_build_config,
)


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the selfpack logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("selfpack")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _add_logging_args(p: argparse.ArgumentParser) -> None:
    """Add the shared verbosity flags to a subcommand parser.

    :param p: Subcommand parser.
    """

    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )


def _print_manifest(entries: list[str]) -> None:
    """Print archive entry paths to stdout, one per line.

    :param entries: Entry paths.
    """

    for name in entries:
        print(name)


def main(argv: list[str] | None = None) -> int:
    """Run the selfpack CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="selfpack",
        description="Bundle a project directory into one self-executing .pyz archive.",
        epilog=f"Set {READONLY_ENV_VAR}=1 to forbid archive writes.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build a self-executing archive.",
    )
    p_build.add_argument(
        "source",
        type=pathlib.Path,
        nargs="?",
        default=pathlib.Path("."),
        help="Directory to pack (defaults to the current directory).",
    )
    p_build.add_argument(
        "--name",
        type=str,
        default=None,
        help="Project name. Defaults to the source directory's name.",
    )
    p_build.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        default=None,
        help="Output archive path (defaults to NAME.pyz).",
    )
    p_build.add_argument(
        "--alias",
        type=str,
        default=None,
        help="Logical archive name exported to the running program (defaults to the output file name).",
    )
    p_build.add_argument(
        "--entry",
        type=str,
        default=None,
        help="Entry point relative to the source directory, always packed (defaults to bin/NAME).",
    )
    p_build.add_argument(
        "--include-suffix",
        dest="include_suffixes",
        action="append",
        default=None,
        metavar="SUFFIX",
        help="File suffix to pack. Repeatable; replaces the default .py/.json/.md/.lock set.",
    )
    p_build.add_argument(
        "--interpreter",
        type=str,
        default=DEFAULT_INTERPRETER,
        help=f"Interpreter command for the #! line (default: {DEFAULT_INTERPRETER!r}).",
    )
    p_build.add_argument(
        "--strict",
        action="store_true",
        help="Fail the build if the entry point is missing instead of warning.",
    )
    _add_logging_args(p_build)

    p_list = subparsers.add_parser(
        "list",
        help="Print the entries of an existing archive.",
    )
    p_list.add_argument(
        "archive",
        type=pathlib.Path,
        help="Archive to inspect.",
    )
    _add_logging_args(p_list)

    ns = parser.parse_args(argv)
    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)

    if ns.command == "build":
        try:
            config: BuildConfig = resolve_build_config(
                source_dir=ns.source,
                name=ns.name,
                output_override=ns.output,
                alias_override=ns.alias,
                entry_override=ns.entry,
                include_suffixes=ns.include_suffixes,
                interpreter=ns.interpreter,
                strict_entry=ns.strict,
            )
            result: BuildResult = build_archive(config, logger=logger)
        except (ConfigError, ArchiveReadOnlyError) as e:
            logger.error(f"selfpack: {e}")
            return 2
        except BuildError as e:
            logger.error(f"selfpack: error: {e}")
            return 1

        print(f"Archive created: {result.output_path}")
        print("Archive contents:")
        _print_manifest(result.entries)
        return 0

    if ns.command == "list":
        try:
            entries: list[str] = read_manifest(ns.archive)
        except BuildError as e:
            logger.error(f"selfpack: error: {e}")
            return 1
        _print_manifest(entries)
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
