from __future__ import annotations

import errno
import logging
import os
import sys
from pathlib import Path
from shutil import copytree

import pytest
from pydantic import BaseModel

from dirtable import (
    AlreadyExistsError,
    DecodeError,
    DirectoryTable,
    EncodeError,
    ExtensionKeyPolicy,
    ForeignFileError,
    FunctionKeyPolicy,
    InvalidKeyError,
    JsonCodec,
    MarkdownFrontmatterCodec,
    ModelCodec,
    NotFoundError,
    ReadOnlyError,
    TableBuilder,
    TableIOError,
    TextCodec,
)

FIXTURES = Path(__file__).parent / "fixtures"


def copy_fixture(name: str, destination: Path) -> Path:
    source = FIXTURES / name
    target = destination / name
    copytree(source, target)
    return target


class Note(BaseModel):
    title: str
    n: int
    tags: list[str] = []


def json_table(path: Path, **kwargs) -> DirectoryTable:
    return DirectoryTable(
        path,
        codec=JsonCodec(),
        key_policy=ExtensionKeyPolicy(extension=".json"),
        **kwargs,
    )


def test_put_then_get_roundtrip(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    path = table.put("alpha", {"n": 1, "tags": ["x"]})

    assert path == tmp_path / "alpha.json"
    assert table.get("alpha") == {"n": 1, "tags": ["x"]}


def test_missing_key_behaviour(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    with pytest.raises(NotFoundError) as excinfo:
        table.get("ghost")
    assert excinfo.value.key == "ghost"

    with pytest.raises(NotFoundError):
        table.delete("ghost")

    assert not table.contains("ghost")
    assert "ghost" not in table


def test_put_overwrites_previous_value(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    table.put("k", {"a": 1, "b": 2})
    table.put("k", {"c": 3})

    assert table.get("k") == {"c": 3}


def test_delete_then_get(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    table.put("k", [1, 2, 3])

    table.delete("k")

    with pytest.raises(NotFoundError):
        table.get("k")
    # second delete reports the entry as gone
    with pytest.raises(NotFoundError):
        table.delete("k")


def test_insert_refuses_existing_entry(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    table.insert("k", {"v": 1})

    with pytest.raises(AlreadyExistsError) as excinfo:
        table.insert("k", {"v": 2})

    assert excinfo.value.key == "k"
    assert table.get("k") == {"v": 1}


def test_invalid_keys_are_rejected(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    for key in ("", "../escape", "a/b", "a\\b", ".hidden", "nul\x00byte", "what?"):
        with pytest.raises(InvalidKeyError):
            table.put(key, {})
        assert not table.contains(key)

    assert list(tmp_path.iterdir()) == []
    assert not (tmp_path.parent / "escape.json").exists()


def test_iteration_yields_exactly_the_entries(tmp_path: Path) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes)
    table.put("epsilon", {"title": "Epsilon", "n": 5})

    assert set(table.keys()) == {"alpha", "beta", "gamma", "epsilon"}
    entries = {entry.key: entry for entry in table.iter()}
    assert set(entries) == {"alpha", "beta", "gamma", "epsilon"}
    assert all(entry.ok for entry in entries.values())
    assert entries["gamma"].value["tags"] == ["last", "greek"]
    assert entries["alpha"].path == notes / "alpha.json"
    # foreign files are excluded from the table, not from the directory
    assert (notes / "README.txt").exists()
    assert (notes / "archive" / "delta.json").exists()


def test_iteration_isolates_decode_failures(tmp_path: Path) -> None:
    mixed = copy_fixture("mixed", tmp_path)
    table = DirectoryTable(
        mixed,
        codec=ModelCodec(Note),
        key_policy=ExtensionKeyPolicy(extension=".json"),
    )

    entries = {entry.key: entry for entry in table.iter()}

    assert set(entries) == {"good", "broken", "wrong_shape"}
    assert entries["good"].unwrap() == Note(title="Good", n=10)
    for key in ("broken", "wrong_shape"):
        error = entries[key].error
        assert isinstance(error, DecodeError)
        assert error.key == key
        assert error.path == mixed / f"{key}.json"
        with pytest.raises(DecodeError):
            entries[key].unwrap()


def test_get_reports_decode_error_with_key(tmp_path: Path) -> None:
    mixed = copy_fixture("mixed", tmp_path)
    table = json_table(mixed)

    with pytest.raises(DecodeError) as excinfo:
        table.get("broken")

    assert excinfo.value.key == "broken"
    assert "broken.json" in str(excinfo.value)


def test_ignore_decode_errors_skips_bad_entries(tmp_path: Path) -> None:
    mixed = copy_fixture("mixed", tmp_path)
    table = DirectoryTable(
        mixed,
        codec=ModelCodec(Note),
        key_policy=ExtensionKeyPolicy(extension=".json"),
        ignore_decode_errors=True,
    )

    assert [entry.key for entry in table.iter()] == ["good"]
    with pytest.raises(DecodeError):
        table.get("broken")


def test_external_edits_are_visible(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    table.put("alpha", {"n": 1})

    (tmp_path / "alpha.json").write_text('{"n": 42}\n')
    assert table.get("alpha") == {"n": 42}

    (tmp_path / "beta.json").write_text("{}")
    assert set(table.keys()) == {"alpha", "beta"}

    (tmp_path / "alpha.json").unlink()
    with pytest.raises(NotFoundError):
        table.get("alpha")
    assert table.count() == 1


def test_iteration_is_lazy_and_single_pass(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    iterator = table.keys()

    # the directory is only listed once iteration starts
    table.put("late", {})
    assert list(iterator) == ["late"]
    assert list(iterator) == []


def test_subdirectory_named_like_an_entry(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    (tmp_path / "folder.json").mkdir()

    assert not table.contains("folder")
    assert list(table.keys()) == []
    with pytest.raises(NotFoundError):
        table.get("folder")


def test_foreign_files_can_warn(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes, on_foreign="warn")

    with caplog.at_level(logging.WARNING, logger="dirtable.table"):
        keys = sorted(table.keys())

    assert keys == ["alpha", "beta", "gamma"]
    assert any("README.txt" in record.getMessage() for record in caplog.records)


def test_foreign_files_can_raise(tmp_path: Path) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes, on_foreign="raise")

    with pytest.raises(ForeignFileError) as excinfo:
        list(table.iter())

    assert excinfo.value.path is not None
    assert excinfo.value.path.parent == notes


def test_unknown_foreign_mode_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        json_table(tmp_path, on_foreign="explode")


def test_read_only_table_rejects_writes(tmp_path: Path) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes, read_only=True)

    assert table.get("alpha")["title"] == "Alpha"
    with pytest.raises(ReadOnlyError):
        table.put("alpha", {})
    with pytest.raises(ReadOnlyError):
        table.insert("new", {})
    with pytest.raises(ReadOnlyError):
        table.delete("alpha")
    with pytest.raises(ReadOnlyError):
        table.rename("alpha", "omega")
    with pytest.raises(ReadOnlyError):
        table.soft_delete("alpha")
    assert (notes / "alpha.json").exists()


def test_rename_moves_entry(tmp_path: Path) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes)

    new_path = table.rename("gamma", "renamed")

    assert new_path == notes / "renamed.json"
    assert table.get("renamed")["n"] == 3
    assert not table.contains("gamma")

    with pytest.raises(AlreadyExistsError):
        table.rename("alpha", "beta")
    with pytest.raises(NotFoundError):
        table.rename("gamma", "other")
    assert table.get("alpha")["n"] == 1
    assert table.get("beta")["n"] == 2


def test_soft_delete_keeps_bytes_outside_the_table(tmp_path: Path) -> None:
    notes = copy_fixture("notes", tmp_path)
    table = json_table(notes)
    original = (notes / "alpha.json").read_bytes()

    tomb = table.soft_delete("alpha")

    assert tomb == notes / ".alpha.json.deleted"
    assert tomb.read_bytes() == original
    assert "alpha" not in set(table.keys())

    table.put("alpha", {"n": 100})
    with pytest.raises(AlreadyExistsError):
        table.soft_delete("alpha")
    assert table.get("alpha") == {"n": 100}

    tomb.rename(notes / "restored.json")
    assert table.get("restored")["title"] == "Alpha"


def test_soft_delete_refuses_tombstone_the_policy_accepts(tmp_path: Path) -> None:
    table = DirectoryTable(tmp_path, key_policy=ExtensionKeyPolicy(include_hidden=True))
    table.put("blob", b"\x00\x01")

    with pytest.raises(InvalidKeyError):
        table.soft_delete("blob")
    assert table.get("blob") == b"\x00\x01"


def test_batch_helpers(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    paths = table.put_many({"a": 1, "b": 2})
    table.put_many([("c", 3)])

    assert paths == [tmp_path / "a.json", tmp_path / "b.json"]
    assert table.count() == 3

    table.delete_many(["a", "b"])
    assert list(table) == ["c"]

    with pytest.raises(NotFoundError):
        table.delete_many(["c", "a"])
    assert table.is_empty()


def test_default_table_stores_raw_bytes(tmp_path: Path) -> None:
    table = DirectoryTable(tmp_path)
    payload = b"\xff\xfe not utf-8 \x00"

    table.put("blob", payload)

    assert (tmp_path / "blob").read_bytes() == payload
    assert table.get("blob") == payload
    assert [entry.value for entry in table.iter()] == [payload]


def test_text_codec_reports_bad_encoding(tmp_path: Path) -> None:
    table = DirectoryTable(tmp_path, codec=TextCodec(), key_policy=ExtensionKeyPolicy(".txt"))
    (tmp_path / "latin.txt").write_bytes(b"caf\xe9")

    with pytest.raises(DecodeError):
        table.get("latin")


def test_missing_directory_is_an_io_error(tmp_path: Path) -> None:
    root = tmp_path / "table"
    root.mkdir()
    table = json_table(root)
    table.put("a", {})
    (root / "a.json").unlink()
    root.rmdir()

    with pytest.raises(TableIOError):
        table.get("a")
    with pytest.raises(TableIOError):
        table.put("a", {})
    with pytest.raises(TableIOError):
        list(table.keys())
    assert not table.contains("a")


def test_lossy_policy_first_name_wins(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    policy = FunctionKeyPolicy(
        to_name=lambda key: key,
        to_key=lambda name: name.lower(),
        validate=lambda key: key == key.lower(),
    )
    table = DirectoryTable(tmp_path, codec=TextCodec(), key_policy=policy)
    (tmp_path / "Note").write_text("upper")
    if (tmp_path / "note").exists():
        pytest.skip("case-insensitive filesystem")
    (tmp_path / "note").write_text("lower")

    with caplog.at_level(logging.DEBUG, logger="dirtable.table"):
        entries = list(table.iter())

    assert [entry.key for entry in entries] == ["note"]
    assert any("already provided" in record.getMessage() for record in caplog.records)
    # "Note" sorts before "note"
    assert entries[0].value == "upper"
    assert table.get("note") == "lower"


def test_concrete_scenario(tmp_path: Path) -> None:
    root = tmp_path / "records"

    table = TableBuilder(root).format("json").create_if_missing().build()
    assert root.is_dir()

    table.put("alpha", {"n": 1})
    assert table.get("alpha") == {"n": 1}

    (root / "alpha.json").unlink()
    with pytest.raises(NotFoundError):
        table.get("alpha")


def test_markdown_table_round_trip(tmp_path: Path) -> None:
    table = DirectoryTable(
        tmp_path,
        codec=MarkdownFrontmatterCodec(),
        key_policy=ExtensionKeyPolicy(extension=".md"),
    )

    table.put("plain", {"title": "x"})
    table.put("body", {"title": "x", "content": "line one\n"})

    assert table.get("plain") == {"title": "x"}
    assert table.get("body") == {"title": "x", "content": "line one\n"}


def test_json_table_accepts_non_string_keys(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    table.put("a", {1: "x"})

    assert table.get("a") == {"1": "x"}


def test_encode_failures_carry_the_key(tmp_path: Path) -> None:
    table = json_table(tmp_path)

    with pytest.raises(EncodeError) as excinfo:
        table.put("a", {"when": object()})
    assert excinfo.value.key == "a"
    assert excinfo.value.path == tmp_path / "a.json"

    with pytest.raises(EncodeError):
        table.insert("b", {object()})
    assert list(tmp_path.iterdir()) == []


def test_bytes_table_rejects_non_bytes(tmp_path: Path) -> None:
    table = DirectoryTable(tmp_path)

    with pytest.raises(EncodeError):
        table.put("blob", 3)

    assert not (tmp_path / "blob").exists()


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX inodes and modes")
def test_rename_keeps_the_same_file(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    old_path = table.put("old", {"n": 1})
    old_path.chmod(0o600)
    inode = old_path.stat().st_ino

    new_path = table.rename("old", "new")

    assert new_path.stat().st_ino == inode
    assert new_path.stat().st_mode & 0o777 == 0o600
    assert list(table.keys()) == ["new"]


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX modes")
def test_rename_without_hard_links(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def no_links(src, dst, *args, **kwargs):
        raise OSError(errno.EXDEV, os.strerror(errno.EXDEV), src)

    table = json_table(tmp_path)
    table.put("old", {"n": 1}).chmod(0o640)
    table.put("taken", {"n": 2})
    monkeypatch.setattr(os, "link", no_links)

    new_path = table.rename("old", "new")
    assert new_path.stat().st_mode & 0o777 == 0o640
    assert table.get("new") == {"n": 1}

    with pytest.raises(AlreadyExistsError):
        table.rename("new", "taken")
    assert table.get("new") == {"n": 1}
    assert table.get("taken") == {"n": 2}

    tomb = table.soft_delete("new")
    assert not new_path.exists()
    assert tomb.stat().st_mode & 0o777 == 0o640
    assert list(table.keys()) == ["taken"]


def test_rename_onto_existing_key_with_hard_links(tmp_path: Path) -> None:
    table = json_table(tmp_path)
    table.put("a", {"n": 1})
    table.put("b", {"n": 2})

    with pytest.raises(AlreadyExistsError) as excinfo:
        table.rename("a", "b")

    assert excinfo.value.key == "b"
    assert table.get("a") == {"n": 1}
    assert table.get("b") == {"n": 2}
