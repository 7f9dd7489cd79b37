"""Archive builder.

This module implements the self-executing archive build:

- It selects files under the source directory by suffix, plus one
  force-included entry point.
- It stages them into an in-memory zip buffer behind a ``#!`` line, with a
  small bootstrap stub as ``__main__.py``.
- It commits the buffer to disk in one atomic replace, marks the result
  executable, and reads the committed archive back as a manifest.
"""

from dataclasses import dataclass
import io
import logging
import os
import pathlib
import tempfile
import textwrap
import time
import zipfile

from selfpack.config import READONLY_ENV_VAR, STUB_ARCNAME, BuildConfig


class BuildError(RuntimeError):
    """Raised when building an archive fails."""


class ArchiveReadOnlyError(BuildError):
    """Raised when archive writes are forbidden by the environment."""


ARCHIVE_MODE: int = 0o755


@dataclass(frozen=True, slots=True)
class SourceFile:
    """A file selected for packing.

    :ivar path: Filesystem path of the file.
    :ivar arcname: Entry name inside the archive (POSIX).
    """

    path: pathlib.Path
    arcname: str


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Outcome of a successful build.

    :ivar output_path: Committed archive path.
    :ivar entries: Entry paths read back from the committed archive.
    :ivar files_staged: Number of source files packed (excluding the stub).
    :ivar bytes_staged: Total bytes of packed source files.
    """

    output_path: pathlib.Path
    entries: list[str]
    files_staged: int
    bytes_staged: int


def build_archive(config: BuildConfig, logger: logging.Logger | None = None) -> BuildResult:
    """Build a self-executing archive.

    :param config: Resolved build configuration.
    :param logger: Optional logger for build progress output.
    :returns: Build result with the archive manifest.
    :raises ArchiveReadOnlyError: If ``config.readonly`` forbids archive writes.
    :raises BuildError: If the archive cannot be built.
    """

    if logger is None:
        logger = logging.getLogger("selfpack")

    # Nothing may touch the filesystem before this check.
    if config.readonly is True:
        raise ArchiveReadOnlyError(
            f"Archive writes are disabled ({READONLY_ENV_VAR} is set). Re-run with {READONLY_ENV_VAR}=0."
        )

    source_dir: pathlib.Path = config.source_dir
    output_path: pathlib.Path = config.output_path
    entry_path: pathlib.Path = source_dir / config.entry_relpath
    entry_exists: bool
    entry_is_file: bool
    try:
        if source_dir.is_dir() is False:
            raise BuildError(f"Source directory does not exist: {source_dir}")
        entry_exists = entry_path.exists()
        entry_is_file = entry_path.is_file()
    except OSError as e:
        raise BuildError(f"Could not inspect {e.filename or source_dir}: {e}") from e

    if entry_exists is True and entry_is_file is False:
        raise BuildError(f"Entry point is not a regular file: {entry_path}")
    if entry_exists is False and config.strict_entry is True:
        raise BuildError(f"Entry point does not exist: {entry_path}")

    t_total0: float = time.perf_counter()
    logger.info(f"selfpack: source={source_dir}")
    logger.info(f"selfpack: output={output_path}")
    logger.info(f"selfpack: alias={config.alias} entry={config.entry_relpath}")
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"selfpack: include_suffixes={list(config.include_suffixes)}")

    _remove_stale_output(output_path=output_path, logger=logger)

    files: list[SourceFile] = select_files(
        source_dir=source_dir,
        include_suffixes=config.include_suffixes,
        exclude_paths=[output_path],
        logger=logger,
    )

    staged_names: set[str] = {f.arcname for f in files}
    if entry_exists is True:
        if config.entry_relpath not in staged_names:
            files.append(SourceFile(path=entry_path, arcname=config.entry_relpath))
            logger.info(f"selfpack: force-included entry point {config.entry_relpath}")
    else:
        logger.warning(
            f"selfpack: entry point {config.entry_relpath} not found; the archive will not run"
        )

    stub: str = render_stub(alias=config.alias, entry_relpath=config.entry_relpath)

    t_stage0: float = time.perf_counter()
    archive_bytes: bytes
    bytes_staged: int
    archive_bytes, bytes_staged = _stage_archive(
        files=files,
        stub=stub,
        interpreter=config.interpreter,
    )
    t_stage1: float = time.perf_counter()
    logger.info(
        f"selfpack: staged {len(files)} files ({bytes_staged / 1024:.1f} KiB) "
        f"in {t_stage1 - t_stage0:.2f}s"
    )

    _commit(output_path=output_path, archive_bytes=archive_bytes)

    entries: list[str] = read_manifest(output_path)
    t_total1: float = time.perf_counter()
    logger.info(f"selfpack: wrote {output_path} ({len(archive_bytes) / 1024:.1f} KiB)")
    logger.info(f"selfpack: done in {t_total1 - t_total0:.2f}s")

    return BuildResult(
        output_path=output_path,
        entries=entries,
        files_staged=len(files),
        bytes_staged=bytes_staged,
    )


def select_files(
    *,
    source_dir: pathlib.Path,
    include_suffixes: tuple[str, ...],
    exclude_paths: list[pathlib.Path] | None = None,
    logger: logging.Logger | None = None,
) -> list[SourceFile]:
    """Select files under ``source_dir`` whose names end in an include suffix.

    :param source_dir: Directory to scan.
    :param include_suffixes: Accepted file name suffixes (e.g. ``.py``).
    :param exclude_paths: Paths that must never be selected (e.g. the output archive).
    :param logger: Optional logger.
    :returns: Selected files, sorted by archive name.
    """

    if logger is None:
        logger = logging.getLogger("selfpack")

    ignore_names: set[str] = {
        "__pycache__",
        ".git",
        ".hg",
        ".svn",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".venv",
        "venv",
    }

    def walk_error(e: OSError) -> None:
        """Abort the scan on any unreadable directory.

        :param e: Error reported by :func:`os.walk`.
        :raises BuildError: Always.
        """

        raise BuildError(f"Could not scan {e.filename}: {e}") from e

    try:
        root_resolved: pathlib.Path = source_dir.resolve()
        excluded: set[str] = set()
        for p in exclude_paths or []:
            p_resolved: pathlib.Path = p.resolve()
            if p_resolved.is_relative_to(root_resolved) is True:
                excluded.add(p_resolved.relative_to(root_resolved).as_posix())
    except OSError as e:
        raise BuildError(f"Could not resolve {e.filename or source_dir}: {e}") from e

    selected: list[SourceFile] = []
    for root_str, dirs, names in os.walk(source_dir, topdown=True, onerror=walk_error):
        root_path: pathlib.Path = pathlib.Path(root_str)
        rel_root: pathlib.PurePosixPath = pathlib.PurePosixPath(
            root_path.relative_to(source_dir).as_posix()
        )
        at_src_root: bool = rel_root.as_posix() == "."

        if at_src_root is True:
            dirs[:] = sorted(d for d in dirs if d not in ignore_names)
        else:
            dirs.sort()

        for name in sorted(names):
            if name == ".DS_Store":
                continue
            if name.endswith(include_suffixes) is False:
                continue

            arcname: str = name if at_src_root is True else (rel_root / name).as_posix()
            if arcname in excluded:
                continue
            if arcname == STUB_ARCNAME:
                logger.warning(f"selfpack: skipping {arcname}; that name is reserved for the stub")
                continue

            src_path: pathlib.Path = root_path / name
            try:
                is_file: bool = src_path.is_file()
            except OSError as e:
                raise BuildError(f"Could not inspect {src_path}: {e}") from e
            if is_file is False:
                continue
            selected.append(SourceFile(path=src_path, arcname=arcname))

    selected.sort(key=lambda f: f.arcname)
    if logger.isEnabledFor(logging.DEBUG) is True:
        for f in selected:
            logger.debug(f"selfpack: selected {f.arcname}")
    return selected


def read_manifest(archive_path: pathlib.Path) -> list[str]:
    """List every entry path stored in an archive.

    :param archive_path: Archive to inspect.
    :returns: Entry names in stored order.
    :raises BuildError: If the archive is missing or not a zip archive.
    """

    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            return zf.namelist()
    except FileNotFoundError as e:
        raise BuildError(f"Archive does not exist: {archive_path}") from e
    except zipfile.BadZipFile as e:
        raise BuildError(f"Not a valid archive: {archive_path}") from e
    except OSError as e:
        raise BuildError(f"Could not read archive {archive_path}: {e}") from e


def render_stub(*, alias: str, entry_relpath: str) -> str:
    """Render the bootstrap stub stored as the archive's ``__main__.py``.

    :param alias: Logical archive name.
    :param entry_relpath: Entry point path inside the archive.
    :returns: Python source code for the stub.
    """

    stub: str = _STUB_TEMPLATE
    stub = stub.replace("__SELFPACK_ALIAS__", repr(alias))
    stub = stub.replace("__SELFPACK_ENTRY__", repr(entry_relpath))
    return stub


def _remove_stale_output(*, output_path: pathlib.Path, logger: logging.Logger) -> None:
    """Delete any archive left at ``output_path`` by a previous run.

    :param output_path: Output archive path.
    :param logger: Logger for progress output.
    :raises BuildError: If the path is a directory or cannot be removed.
    """

    try:
        is_link: bool = output_path.is_symlink()
        is_dir: bool = output_path.is_dir()
        exists: bool = output_path.exists()
    except OSError as e:
        raise BuildError(f"Could not inspect output path {output_path}: {e}") from e

    if is_link is False and is_dir is True:
        raise BuildError(f"Output path is a directory: {output_path}")
    if exists is False and is_link is False:
        return

    try:
        output_path.unlink()
    except OSError as e:
        raise BuildError(f"Could not remove existing archive {output_path}: {e}") from e
    logger.info(f"selfpack: removed existing {output_path}")


def _stage_archive(
    *,
    files: list[SourceFile],
    stub: str,
    interpreter: str,
) -> tuple[bytes, int]:
    """Build the complete archive (``#!`` line + zip) as bytes.

    :param files: Files to pack.
    :param stub: Rendered stub source, stored first as ``__main__.py``.
    :param interpreter: Interpreter command for the ``#!`` line.
    :returns: Archive bytes and the total size of packed source files.
    :raises BuildError: If a file cannot be read or packed.
    """

    buf: io.BytesIO = io.BytesIO()
    buf.write(f"#!{interpreter}\n".encode("utf-8"))

    bytes_staged: int = 0
    # Pre-1980 mtimes are clamped to 1980-01-01 rather than rejected.
    with zipfile.ZipFile(
        buf,
        "w",
        compression=zipfile.ZIP_STORED,
        strict_timestamps=False,
    ) as zf:
        zf.writestr(STUB_ARCNAME, stub)
        for f in files:
            try:
                zf.write(f.path, arcname=f.arcname)
                bytes_staged += f.path.stat().st_size
            except OSError as e:
                raise BuildError(f"Could not add {f.arcname} to the archive: {e}") from e

    return buf.getvalue(), bytes_staged


def _commit(*, output_path: pathlib.Path, archive_bytes: bytes) -> None:
    """Write staged archive bytes to ``output_path`` in one atomic replace.

    The bytes go to a uniquely named temporary file next to the output, which
    is made executable and then renamed over ``output_path``.

    :param output_path: Final archive path.
    :param archive_bytes: Complete archive content.
    :raises BuildError: If the archive cannot be written.
    """

    tmp_path: pathlib.Path | None = None
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=output_path.parent,
            prefix=f".{output_path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_path = pathlib.Path(f.name)
            f.write(archive_bytes)
        os.chmod(tmp_path, ARCHIVE_MODE)
        tmp_path.replace(output_path)
    except OSError as e:
        if tmp_path is not None:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
        raise BuildError(f"Could not write archive {output_path}: {e}") from e


_STUB_TEMPLATE: str = textwrap.dedent(
    r'''
    # This file was generated by selfpack.
    #
    # It is the archive's bootstrap stub: it maps the archive under its logical
    # name and runs the packed entry point in _ENTRY as __main__.

    import os
    import sys
    from typing import NoReturn
    import zipfile


    _ALIAS: str = __SELFPACK_ALIAS__
    _ENTRY: str = __SELFPACK_ENTRY__


    def _runtime_error(message: str) -> NoReturn:
        """Exit with a message.

        :param message: Error message.
        """

        sys.stderr.write(message)
        if message.endswith("\n") is False:
            sys.stderr.write("\n")
        raise SystemExit(2)


    def _map_archive() -> str:
        """Map this archive under its alias.

        :returns: Absolute path of the running archive.
        """

        archive: str = os.path.dirname(os.path.abspath(__file__))
        if archive in sys.path:
            sys.path.remove(archive)
        sys.path.insert(0, archive)
        os.environ["SELFPACK_ARCHIVE"] = archive
        os.environ["SELFPACK_ALIAS"] = _ALIAS
        return archive


    def _read_entry(archive: str) -> bytes:
        """Read the entry point's source out of the archive.

        :param archive: Archive path.
        :returns: Entry point source bytes.
        """

        try:
            with zipfile.ZipFile(archive) as zf:
                return zf.read(_ENTRY)
        except KeyError:
            _runtime_error(f"{_ALIAS}: entry point {_ENTRY!r} is missing from the archive.")
        except (OSError, zipfile.BadZipFile) as e:
            _runtime_error(f"{_ALIAS}: cannot read archive {archive!r}: {e}")


    def main() -> None:
        """Program entrypoint."""

        archive: str = _map_archive()
        source: bytes = _read_entry(archive)
        entry_file: str = f"{archive}/{_ENTRY}"
        code = compile(source, entry_file, "exec")
        namespace: dict[str, object] = {
            "__name__": "__main__",
            "__file__": entry_file,
            "__package__": None,
            "__spec__": None,
            "__loader__": None,
            "__doc__": None,
            "__builtins__": __builtins__,
        }
        exec(code, namespace)


    if __name__ == "__main__":
        main()
    '''
).lstrip()
