"""Tree transformer tests: conversions, sandboxing, symlinks and build steps."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from OneFpgaCatalog.Distribution.build_steps import BuildStepRegistry
from OneFpgaCatalog.Distribution.errors import BuildStepError, ConfigError, SandboxViolation
from OneFpgaCatalog.Distribution.transform import TreeTransformer


@pytest.fixture
def roots(tmp_path):
    source = tmp_path / "files"
    source.mkdir()
    return source, tmp_path / "dist"


def test_toml_becomes_compact_json(roots):
    source, dist = roots
    (source / "systems").mkdir()
    (source / "systems" / "nes.toml").write_text(
        'name = "NES"\ntags = ["8-bit", "Nintendo"]\n\n[gamesDb]\nurl = "nes.sqlite"\n'
        "released = 1983-07-15\n",
        encoding="utf-8",
    )

    written = TreeTransformer(source, dist).copy("systems/nes.toml")

    assert written == dist.resolve() / "systems" / "nes.json"
    text = written.read_text(encoding="utf-8")
    assert " " not in text.replace("NES", "").replace("8-bit", "")
    assert json.loads(text) == {
        "name": "NES",
        "tags": ["8-bit", "Nintendo"],
        "gamesDb": {"url": "nes.sqlite", "released": "1983-07-15"},
    }
    assert not (dist / "systems" / "nes.toml").exists()


def test_toml_with_explicit_destination_gains_json_suffix(roots):
    source, dist = roots
    (source / "a.toml").write_text('key = "value"\n', encoding="utf-8")
    transformer = TreeTransformer(source, dist)

    assert transformer.copy("a.toml", "renamed") == dist.resolve() / "renamed.json"
    assert transformer.copy("a.toml", "b.toml") == dist.resolve() / "b.json"
    assert json.loads((dist / "renamed.json").read_text("utf-8")) == {"key": "value"}
    assert not (dist / "renamed").exists()


def test_json_is_minified_and_non_ascii_kept(roots):
    source, dist = roots
    (source / "cores.json").write_text('{\n  "name": "Famicôm",\n  "list": [1, 2]\n}\n', "utf-8")

    TreeTransformer(source, dist).copy()

    assert (dist / "cores.json").read_text(encoding="utf-8") == '{"name":"Famicôm","list":[1,2]}'


def test_markdown_is_dropped_and_binaries_copied(roots):
    source, dist = roots
    (source / "README.md").write_text("# docs", encoding="utf-8")
    (source / "cores").mkdir()
    (source / "cores" / "nes.rbf").write_bytes(b"\x00\xffbits")

    transformer = TreeTransformer(source, dist)
    transformer.copy()

    assert not (dist / "README.md").exists()
    assert (dist / "cores" / "nes.rbf").read_bytes() == b"\x00\xffbits"
    assert transformer.stats.dropped == 1
    assert transformer.stats.copied == 1


def test_invalid_json_is_reported(roots):
    source, dist = roots
    (source / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        TreeTransformer(source, dist).copy("broken.json")


def test_parent_escape_is_rejected_and_writes_nothing(roots):
    source, dist = roots
    with pytest.raises(SandboxViolation):
        TreeTransformer(source, dist).copy("../../etc/passwd", "x")
    assert not dist.exists()


def test_absolute_source_is_rejected(roots):
    source, dist = roots
    with pytest.raises(SandboxViolation):
        TreeTransformer(source, dist).copy(str(source / "anything"))


def test_symlink_target_is_copied_under_link_name(roots):
    source, dist = roots
    (source / "releases").mkdir()
    target = source / "releases" / "1fpga-20240101.tgz"
    target.write_bytes(b"payload")
    os.symlink("1fpga-20240101.tgz", source / "releases" / "1fpga-latest.tgz")

    TreeTransformer(source, dist).copy()

    copied = dist / "releases" / "1fpga-latest.tgz"
    assert copied.read_bytes() == b"payload"
    assert not copied.is_symlink()


def test_symlink_escaping_the_root_is_rejected(roots, tmp_path):
    source, dist = roots
    outside = tmp_path / "secret.txt"
    outside.write_text("secret", encoding="utf-8")
    os.symlink(outside, source / "leak.txt")

    with pytest.raises(SandboxViolation):
        TreeTransformer(source, dist).copy("leak.txt")
    assert not (dist / "leak.txt").exists()


class RecordingStep:
    def __init__(self):
        self.calls = []

    def build(self, copy, dest):
        self.calls.append(Path(dest))
        copy("data.json")
        copy("data.json", Path(dest) / "renamed.json")
        (Path(dest) / "generated.bin").write_bytes(b"generated")


def test_registered_step_replaces_recursive_copy(roots):
    source, dist = roots
    step_dir = source / "db"
    step_dir.mkdir()
    (step_dir / "_build.toml").write_text('step = "recording"\n', encoding="utf-8")
    (step_dir / "data.json").write_text('{ "a": 1 }', encoding="utf-8")
    (step_dir / "ignored.txt").write_text("not copied", encoding="utf-8")
    step = RecordingStep()

    transformer = TreeTransformer(source, dist, BuildStepRegistry({Path("db"): step}))
    transformer.copy()

    assert step.calls == [dist.resolve() / "db"]
    assert (dist / "db" / "data.json").read_text(encoding="utf-8") == '{"a":1}'
    assert (dist / "db" / "renamed.json").exists()
    assert (dist / "db" / "generated.bin").exists()
    assert not (dist / "db" / "ignored.txt").exists()
    assert not (dist / "db" / "_build.toml").exists()
    assert transformer.stats.steps == 1


def test_build_marker_is_never_copied(roots):
    source, dist = roots
    (source / "_build.toml").write_text('step = "x"\n', encoding="utf-8")
    (source / "a.txt").write_text("a", encoding="utf-8")

    TreeTransformer(source, dist).copy()

    assert sorted(p.name for p in dist.iterdir()) == ["a.txt"]


class FailingStep:
    def build(self, copy, dest):
        raise RuntimeError("boom")


def test_failing_step_aborts_with_directory(roots):
    source, dist = roots
    (source / "nes").mkdir()

    transformer = TreeTransformer(source, dist, BuildStepRegistry({"nes": FailingStep()}))
    with pytest.raises(BuildStepError) as excinfo:
        transformer.copy()

    assert excinfo.value.directory == source.resolve() / "nes"
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert "boom" in str(excinfo.value)


def test_step_copy_is_sandboxed(roots):
    source, dist = roots
    (source / "nes").mkdir()

    class EscapingStep:
        def build(self, copy, dest):
            copy("../../outside.txt")

    transformer = TreeTransformer(source, dist, BuildStepRegistry({"nes": EscapingStep()}))
    with pytest.raises(BuildStepError) as excinfo:
        transformer.copy()
    assert isinstance(excinfo.value.cause, SandboxViolation)
