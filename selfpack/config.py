"""Build configuration helpers.

This module turns user-supplied CLI arguments and the process environment into
a single immutable :class:`BuildConfig`. The builder itself never reads the
environment; everything it needs is passed in explicitly.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import os
import pathlib


class ConfigError(ValueError):
    """Raised when build arguments cannot be resolved to a valid config."""


READONLY_ENV_VAR: str = "SELFPACK_READONLY"

DEFAULT_INCLUDE_SUFFIXES: tuple[str, ...] = (".py", ".json", ".md", ".lock")

DEFAULT_INTERPRETER: str = "/usr/bin/env python3"

STUB_ARCNAME: str = "__main__.py"


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Archive build configuration.

    :ivar source_dir: Directory whose files are packed.
    :ivar output_path: Final archive path.
    :ivar alias: Logical archive name the stub maps itself under.
    :ivar entry_relpath: Force-included entry point, relative to ``source_dir`` (POSIX).
    :ivar include_suffixes: File name suffixes selected for packing.
    :ivar interpreter: Interpreter command written to the ``#!`` line.
    :ivar readonly: Archive writes are forbidden when true.
    :ivar strict_entry: Treat a missing entry point as a build failure.
    """

    source_dir: pathlib.Path
    output_path: pathlib.Path
    alias: str
    entry_relpath: str
    include_suffixes: tuple[str, ...]
    interpreter: str
    readonly: bool
    strict_entry: bool


def resolve_build_config(
    *,
    source_dir: pathlib.Path,
    name: str | None = None,
    output_override: pathlib.Path | None = None,
    alias_override: str | None = None,
    entry_override: str | None = None,
    include_suffixes: Sequence[str] | None = None,
    interpreter: str = DEFAULT_INTERPRETER,
    strict_entry: bool = False,
    environ: Mapping[str, str] | None = None,
) -> BuildConfig:
    """Resolve user-supplied build arguments into a :class:`~BuildConfig`.

    :param source_dir: Directory to pack.
    :param name: Project name. Defaults to the source directory's name.
    :param output_override: Optional explicit output path (default ``NAME.pyz``).
    :param alias_override: Optional explicit alias (default: output file name).
    :param entry_override: Optional explicit entry point (default ``bin/NAME``).
    :param include_suffixes: Optional suffix set replacing the defaults.
    :param interpreter: Interpreter command for the ``#!`` line.
    :param strict_entry: Fail the build if the entry point is missing.
    :param environ: Environment mapping to read the write-protection flag from.
    :returns: Resolved build config.
    :raises ConfigError: If the config cannot be resolved.
    """

    if environ is None:
        environ = os.environ
    readonly: bool = resolve_readonly(environ)

    project_name: str
    if name is not None:
        project_name = name.strip()
    else:
        project_name = source_dir.resolve().name
    if len(project_name) == 0:
        raise ConfigError("Could not derive a project name; pass --name.")
    if "/" in project_name or "\\" in project_name:
        raise ConfigError(f"Invalid --name {project_name!r}; expected a bare name.")

    output_path: pathlib.Path
    if output_override is not None:
        output_path = output_override
    else:
        output_path = pathlib.Path(f"{project_name}.pyz")

    alias: str = alias_override if alias_override is not None else output_path.name
    if len(alias) == 0 or "/" in alias or "\\" in alias:
        raise ConfigError(f"Invalid --alias {alias!r}; expected a bare file name.")

    entry_relpath: str = _normalize_entry(
        entry_override if entry_override is not None else f"bin/{project_name}"
    )

    suffixes: tuple[str, ...]
    if include_suffixes is None:
        suffixes = DEFAULT_INCLUDE_SUFFIXES
    else:
        suffixes = _normalize_suffixes(include_suffixes)

    if len(interpreter.strip()) == 0:
        raise ConfigError("--interpreter must not be empty.")

    return BuildConfig(
        source_dir=source_dir,
        output_path=output_path,
        alias=alias,
        entry_relpath=entry_relpath,
        include_suffixes=suffixes,
        interpreter=interpreter.strip(),
        readonly=readonly,
        strict_entry=strict_entry,
    )


def resolve_readonly(environ: Mapping[str, str]) -> bool:
    """Read the archive write-protection flag.

    :param environ: Environment mapping.
    :returns: ``True`` if archive writes are forbidden.
    :raises ConfigError: If the flag has an unrecognized value.
    """

    raw: str | None = environ.get(READONLY_ENV_VAR)
    if raw is None or len(raw.strip()) == 0:
        return False

    parsed: bool | None = _parse_env_bool(raw)
    if parsed is None:
        raise ConfigError(
            f"Invalid {READONLY_ENV_VAR}={raw!r}; expected one of 1/0, true/false, yes/no, on/off."
        )
    return parsed


def _parse_env_bool(value: str) -> bool | None:
    """Parse a string into a boolean.

    :param value: Raw environment variable string.
    :returns: Parsed boolean, or ``None`` if unknown.
    """

    v: str = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return None


def _normalize_entry(entry: str) -> str:
    """Validate and normalize the force-included entry path.

    :param entry: Entry path relative to the source directory.
    :returns: Normalized POSIX relative path.
    :raises ConfigError: If the path is absolute, escapes the source, or is reserved.
    """

    p: pathlib.PurePosixPath = pathlib.PurePosixPath(entry.replace("\\", "/"))
    if p.is_absolute() is True or len(p.parts) == 0:
        raise ConfigError(f"Invalid --entry {entry!r}; expected a path relative to the source dir.")
    if ".." in p.parts:
        raise ConfigError(f"Invalid --entry {entry!r}; it must stay inside the source dir.")

    normalized: str = p.as_posix()
    if normalized == STUB_ARCNAME:
        raise ConfigError(f"--entry may not be {STUB_ARCNAME!r}; that name is reserved for the stub.")
    return normalized


def _normalize_suffixes(suffixes: Sequence[str]) -> tuple[str, ...]:
    """Normalize include suffixes to a sorted, de-duplicated ``.ext`` tuple.

    :param suffixes: Raw suffixes, with or without a leading dot.
    :returns: Normalized suffixes.
    :raises ConfigError: If no usable suffix remains.
    """

    out: set[str] = set()
    for s in suffixes:
        v: str = s.strip()
        if len(v) == 0:
            continue
        if v.startswith(".") is False:
            v = f".{v}"
        if v == ".":
            continue
        out.add(v)

    if len(out) == 0:
        raise ConfigError("--include-suffix needs at least one non-empty suffix.")
    return tuple(sorted(out))
