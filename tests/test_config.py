import pathlib

import pytest

from selfpack.config import (
    DEFAULT_INCLUDE_SUFFIXES,
    DEFAULT_INTERPRETER,
    READONLY_ENV_VAR,
    ConfigError,
    resolve_build_config,
    resolve_readonly,
)


def test_defaults_derive_from_source_dir_name(tmp_path):
    src = tmp_path / "ldoc"
    src.mkdir()
    cfg = resolve_build_config(source_dir=src, environ={})

    assert cfg.output_path == pathlib.Path("ldoc.pyz")
    assert cfg.alias == "ldoc.pyz"
    assert cfg.entry_relpath == "bin/ldoc"
    assert cfg.include_suffixes == DEFAULT_INCLUDE_SUFFIXES
    assert cfg.interpreter == DEFAULT_INTERPRETER
    assert cfg.readonly is False
    assert cfg.strict_entry is False


def test_explicit_name_and_overrides(tmp_path):
    cfg = resolve_build_config(
        source_dir=tmp_path,
        name="tool",
        output_override=tmp_path / "dist" / "t.pyz",
        alias_override="tool.phar",
        entry_override="scripts/run",
        environ={},
    )
    assert cfg.output_path == tmp_path / "dist" / "t.pyz"
    assert cfg.alias == "tool.phar"
    assert cfg.entry_relpath == "scripts/run"


def test_alias_defaults_to_output_file_name(tmp_path):
    cfg = resolve_build_config(source_dir=tmp_path, output_override=tmp_path / "x" / "y.pyz", environ={})
    assert cfg.alias == "y.pyz"


def test_include_suffixes_are_normalized():
    cfg = resolve_build_config(
        source_dir=pathlib.Path("proj"),
        include_suffixes=["md", ".py", " py ", ""],
        environ={},
    )
    assert cfg.include_suffixes == (".md", ".py")


def test_include_suffixes_must_not_be_empty():
    with pytest.raises(ConfigError):
        resolve_build_config(source_dir=pathlib.Path("proj"), include_suffixes=["", " "], environ={})


@pytest.mark.parametrize("entry", ["/abs/entry", "../outside", "bin/../../x", "__main__.py"])
def test_rejects_bad_entry(entry):
    with pytest.raises(ConfigError):
        resolve_build_config(source_dir=pathlib.Path("proj"), entry_override=entry, environ={})


def test_entry_backslashes_become_posix():
    cfg = resolve_build_config(source_dir=pathlib.Path("proj"), entry_override="bin\\run", environ={})
    assert cfg.entry_relpath == "bin/run"


@pytest.mark.parametrize("alias", ["", "a/b", "a\\b"])
def test_rejects_bad_alias(alias):
    with pytest.raises(ConfigError):
        resolve_build_config(source_dir=pathlib.Path("proj"), alias_override=alias, environ={})


def test_rejects_empty_interpreter():
    with pytest.raises(ConfigError):
        resolve_build_config(source_dir=pathlib.Path("proj"), interpreter="  ", environ={})


@pytest.mark.parametrize(
    "raw,expected",
    [("1", True), ("On", True), (" yes ", True), ("true", True), ("0", False), ("off", False), ("", False)],
)
def test_resolve_readonly(raw, expected):
    assert resolve_readonly({READONLY_ENV_VAR: raw}) is expected


def test_readonly_unset_means_writable():
    assert resolve_readonly({}) is False


def test_readonly_rejects_unknown_value():
    with pytest.raises(ConfigError, match=READONLY_ENV_VAR):
        resolve_build_config(source_dir=pathlib.Path("proj"), environ={READONLY_ENV_VAR: "maybe"})


def test_readonly_flag_is_carried_into_config():
    cfg = resolve_build_config(source_dir=pathlib.Path("proj"), environ={READONLY_ENV_VAR: "1"})
    assert cfg.readonly is True
