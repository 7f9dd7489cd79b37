import pathlib

import pytest

from selfpack.config import BuildConfig, resolve_build_config


@pytest.fixture
def write_tree():
    """Create files (relative path -> text) under a root directory."""

    def factory(root: pathlib.Path, files: dict[str, str]) -> pathlib.Path:
        for rel, text in files.items():
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        return root

    return factory


@pytest.fixture
def make_config(tmp_path):
    """Build a config for a source tree with an empty environment."""

    def factory(source_dir: pathlib.Path, **overrides) -> BuildConfig:
        kwargs = {
            "source_dir": source_dir,
            "output_override": tmp_path / "out" / "app.pyz",
            "environ": {},
        }
        kwargs.update(overrides)
        return resolve_build_config(**kwargs)

    return factory
