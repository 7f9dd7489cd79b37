import json
import pathlib
import subprocess
import sys

from selfpack.builder import build_archive, render_stub
from selfpack.config import resolve_build_config

EXAMPLE_DIR = pathlib.Path(__file__).resolve().parent.parent / "examples" / "hello"


def _run(archive: pathlib.Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, str(archive), *args],
        capture_output=True,
        text=True,
        timeout=60,
    )


def test_render_stub_is_valid_python():
    stub = render_stub(alias="it's.pyz", entry_relpath="bin/app")
    compile(stub, "<stub>", "exec")
    assert "def _runtime_error(message: str) -> NoReturn:" in stub
    assert "_ALIAS: str = \"it's.pyz\"" in stub


def test_example_archive_runs_entry_point(tmp_path):
    out = tmp_path / "hello.pyz"
    cfg = resolve_build_config(source_dir=EXAMPLE_DIR, output_override=out, environ={})
    result = build_archive(cfg)

    assert set(result.entries) == {"__main__.py", "README.md", "greeting.py", "bin/hello"}

    proc = _run(out, "pack")
    assert proc.returncode == 0, proc.stderr
    lines = proc.stdout.splitlines()
    assert lines[0] == "hello, pack"
    assert json.loads(lines[1]) == {"alias": "hello.pyz", "entry": "hello"}


def test_entry_exit_status_propagates(tmp_path, write_tree, make_config):
    src = write_tree(tmp_path / "src", {"bin/app": "import sys\nsys.exit(3)\n"})
    cfg = make_config(src, entry_override="bin/app")
    build_archive(cfg)

    assert _run(cfg.output_path).returncode == 3


def test_entry_sees_archive_environment(tmp_path, write_tree, make_config):
    entry = (
        "import os\n"
        "print(__name__)\n"
        "print(os.environ['SELFPACK_ALIAS'])\n"
        "print(os.environ['SELFPACK_ARCHIVE'])\n"
    )
    src = write_tree(tmp_path / "src", {"bin/app": entry})
    cfg = make_config(src, entry_override="bin/app", alias_override="tool.pyz")
    build_archive(cfg)

    proc = _run(cfg.output_path)
    assert proc.returncode == 0, proc.stderr
    name, alias, archive = proc.stdout.splitlines()
    assert name == "__main__"
    assert alias == "tool.pyz"
    assert pathlib.Path(archive).resolve() == cfg.output_path.resolve()


def test_missing_entry_fails_at_runtime(tmp_path, write_tree, make_config):
    src = write_tree(tmp_path / "src", {"a.py": ""})
    cfg = make_config(src, entry_override="bin/app")
    build_archive(cfg)

    proc = _run(cfg.output_path)
    assert proc.returncode == 2
    assert "missing from the archive" in proc.stderr
