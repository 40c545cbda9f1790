"""Tests for file identity and rotation classification."""

import os

from logfollow.identity import Change, RotationDetector, file_identity, open_log


def _identity(path) -> int:
    return file_identity(os.stat(path))


class TestFileIdentity:
    def test_same_file_same_identity(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("x\n")
        with open(f, "a") as fh:
            fh.write("more\n")
        assert _identity(f) == file_identity(os.stat(str(f)))

    def test_distinct_files_differ(self, tmp_path):
        a = tmp_path / "a.log"
        b = tmp_path / "b.log"
        a.write_text("")
        b.write_text("")
        assert _identity(a) != _identity(b)

    def test_open_log_is_binary(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_bytes(b"abc\n")
        with open_log(str(f)) as fh:
            assert fh.read() == b"abc\n"


class TestRotationDetector:
    def test_missing_path_not_yet_available(self, tmp_path):
        result = RotationDetector().classify(str(tmp_path / "gone.log"), 1, 0)
        assert result.change is Change.NOT_YET_AVAILABLE
        assert result.handle is None

    def test_unchanged(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("hello\n")
        result = RotationDetector().classify(str(f), _identity(f), 6)
        assert result.change is Change.UNCHANGED
        assert result.handle is None

    def test_grew(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("hello\nworld\n")
        result = RotationDetector().classify(str(f), _identity(f), 6)
        assert result.change is Change.GREW
        assert result.size == 12

    def test_truncated(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("hi\n")
        result = RotationDetector().classify(str(f), _identity(f), 100)
        assert result.change is Change.TRUNCATED
        assert result.size == 3

    def test_rotated_hands_over_new_handle(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("old\n")
        old_identity = _identity(f)
        os.rename(f, tmp_path / "a.log.1")
        f.write_text("new\n")

        result = RotationDetector().classify(str(f), old_identity, 4)
        try:
            assert result.change is Change.ROTATED
            assert result.identity == _identity(f)
            assert result.size == 4
            assert result.handle.read() == b"new\n"
        finally:
            result.handle.close()

    def test_identity_takes_precedence_over_size(self, tmp_path):
        # A replacement file smaller than the known size is a rotation, not a truncation.
        f = tmp_path / "a.log"
        f.write_text("a much longer first file\n")
        old_identity = _identity(f)
        os.rename(f, tmp_path / "a.log.1")
        f.write_text("x\n")

        result = RotationDetector().classify(str(f), old_identity, 25)
        result.handle.close()
        assert result.change is Change.ROTATED

    def test_uses_injected_opener(self, tmp_path):
        opened = []

        def opener(path):
            opened.append(path)
            return open_log(path)

        f = tmp_path / "a.log"
        f.write_text("")
        RotationDetector(opener=opener).classify(str(f), _identity(f), 0)
        assert opened == [str(f)]
