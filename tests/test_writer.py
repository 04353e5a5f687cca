"""Unit tests for writer.py - Rendered file persistence."""

import os
import stat

import pytest
from unittest.mock import patch

from writer import (
    DIRECTORY_MODE,
    FILE_MODE,
    RenderedFile,
    WriteError,
    ensure_directory,
    write_file,
    write_files,
)

UID = os.getuid()
GID = os.getgid()


def mode_of(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class TestEnsureDirectory:
    """Tests for ensure_directory."""

    def test_creates_intermediate_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "c"
        ensure_directory(str(target))
        assert target.is_dir()
        assert mode_of(target) & 0o077 == 0

    def test_idempotent(self, tmp_path):
        ensure_directory(str(tmp_path / "d"))
        ensure_directory(str(tmp_path / "d"))
        assert (tmp_path / "d").is_dir()

    def test_file_in_the_way(self, tmp_path):
        (tmp_path / "blocker").write_text("x")
        with pytest.raises(WriteError) as exc_info:
            ensure_directory(str(tmp_path / "blocker" / "sub"))
        assert "error creating directory" in str(exc_info.value)


class TestWriteFile:
    """Tests for write_file."""

    def test_writes_owner_read_only(self, tmp_path):
        rendered = RenderedFile(str(tmp_path), "a.yaml", b"a: 1\n", UID, GID)
        write_file(rendered)

        assert (tmp_path / "a.yaml").read_bytes() == b"a: 1\n"
        assert mode_of(rendered.path) == FILE_MODE
        assert os.stat(rendered.path).st_uid == UID

    def test_replaces_read_only_file(self, tmp_path):
        write_file(RenderedFile(str(tmp_path), "a.yaml", b"old\n", UID, GID))
        write_file(RenderedFile(str(tmp_path), "a.yaml", b"new\n", UID, GID))

        assert (tmp_path / "a.yaml").read_bytes() == b"new\n"
        assert mode_of(tmp_path / "a.yaml") == FILE_MODE

    def test_no_temporary_files_left(self, tmp_path):
        write_file(RenderedFile(str(tmp_path), "a.yaml", b"x", UID, GID))
        assert os.listdir(tmp_path) == ["a.yaml"]

    def test_chown_failure_cleans_up(self, tmp_path):
        write_file(RenderedFile(str(tmp_path), "a.yaml", b"old\n", UID, GID))

        with patch("writer.os.chown", side_effect=PermissionError("denied")):
            with pytest.raises(WriteError) as exc_info:
                write_file(RenderedFile(str(tmp_path), "a.yaml", b"new\n", 0, 0))

        assert "error chowning" in str(exc_info.value)
        assert exc_info.value.path == str(tmp_path / "a.yaml")
        assert os.listdir(tmp_path) == ["a.yaml"]
        assert (tmp_path / "a.yaml").read_bytes() == b"old\n"

    def test_missing_directory(self, tmp_path):
        rendered = RenderedFile(str(tmp_path / "missing"), "a.yaml", b"x", UID, GID)
        with pytest.raises(WriteError) as exc_info:
            write_file(rendered)
        assert "error staging" in str(exc_info.value)


class TestWriteFiles:
    """Tests for write_files."""

    def test_writes_in_order(self, tmp_path):
        target = tmp_path / "conf"
        written = write_files(
            str(target), [("b.yaml", b"b"), ("a.yaml", b"a")], UID, GID
        )

        assert [f.filename for f in written] == ["b.yaml", "a.yaml"]
        assert mode_of(target) == DIRECTORY_MODE
        assert (target / "a.yaml").read_bytes() == b"a"
        assert (target / "b.yaml").read_bytes() == b"b"

    def test_failure_aborts_remaining(self, tmp_path):
        calls = []
        real_chown = os.chown

        def flaky_chown(path, uid, gid):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("boom")
            real_chown(path, uid, gid)

        with patch("writer.os.chown", side_effect=flaky_chown):
            with pytest.raises(WriteError) as exc_info:
                write_files(
                    str(tmp_path),
                    [("one.yaml", b"1"), ("two.yaml", b"2"), ("three.yaml", b"3")],
                    UID,
                    GID,
                )

        assert exc_info.value.path.endswith("two.yaml")
        assert sorted(os.listdir(tmp_path)) == ["one.yaml"]
