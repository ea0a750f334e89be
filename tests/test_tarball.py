"""Tests for the build context archive writer."""

import io
import os
import tarfile

import pytest

from sockbox.models import TarEntry
from sockbox.tarball import BLOCK_SIZE, build_context_tar, checksum, iter_entries, tar_header


def _header_checksum(header: bytes) -> int:
    return int(header[148:154].decode("ascii"), 8)


@pytest.fixture
def context_dir(tmp_path):
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "data.txt").write_bytes(b"0123456789")
    return tmp_path


class TestHeader:
    """Single header layout."""

    def test_regular_file_fields(self):
        header = tar_header(TarEntry(path="app/main.py", size=1234, mode=0o644, is_dir=False, mtime=1700000000))
        assert len(header) == BLOCK_SIZE
        assert header[0:11] == b"app/main.py"
        assert header[100:108] == b"0000644\0"
        assert header[108:116] == b"0000000\0"
        assert header[116:124] == b"0000000\0"
        assert header[124:136] == b"%011o\0" % 1234
        assert header[136:148] == b"%011o\0" % 1700000000
        assert header[156:157] == b"0"
        assert header[257:263] == b"ustar\0"
        assert header[263:265] == b"00"
        assert header[265:269] == b"root"
        assert header[297:301] == b"root"

    def test_directory_gets_trailing_slash_and_zero_size(self):
        header = tar_header(TarEntry(path="pkg", size=4096, mode=0o755, is_dir=True, mtime=0))
        assert header[0:4] == b"pkg/"
        assert header[156:157] == b"5"
        assert header[124:136] == b"00000000000\0"

    def test_checksum_field_format(self):
        header = tar_header(TarEntry(path="a", size=1, mode=0o600, is_dir=False, mtime=1))
        assert header[154:156] == b"\0 "

    @pytest.mark.parametrize(
        "entry",
        [
            TarEntry(path="a", size=0, mode=0o644, is_dir=False, mtime=0),
            TarEntry(path="deep/nested/dir", size=0, mode=0o700, is_dir=True, mtime=1234567890),
            TarEntry(path="x" * 100, size=99999, mode=0o777, is_dir=False, mtime=2 ** 32),
        ],
    )
    def test_checksum_matches_sum_of_header(self, entry):
        header = tar_header(entry)
        others = sum(header[:148]) + sum(header[156:])
        assert _header_checksum(header) == others + 8 * ord(" ")
        assert checksum(header) == _header_checksum(header)

    def test_long_name_uses_prefix_field(self):
        path = "d" * 80 + "/" + "e" * 80 + "/file.txt"
        header = tar_header(TarEntry(path=path, size=0, mode=0o644, is_dir=False, mtime=0))
        assert header[0:89] == ("e" * 80 + "/file.txt").encode()
        assert header[345:425] == b"d" * 80
        member = tarfile.open(fileobj=io.BytesIO(header + b"\0" * 1024)).getmembers()[0]
        assert member.name == path

    def test_unsplittable_name_raises(self):
        with pytest.raises(ValueError):
            tar_header(TarEntry(path="n" * 200, size=0, mode=0o644, is_dir=False, mtime=0))


class TestBuildContextTar:
    """Whole archives."""

    def test_one_subdirectory_with_one_file(self, context_dir):
        archive = build_context_tar(str(context_dir))
        assert len(archive) % BLOCK_SIZE == 0
        assert archive[-1024:] == b"\0" * 1024
        # dir header, file header, one content block, two end blocks
        assert len(archive) == 5 * BLOCK_SIZE

    def test_directory_precedes_its_children(self, context_dir):
        names = [entry.path for entry, _ in iter_entries(str(context_dir))]
        assert names == ["sub", "sub/data.txt"]

    def test_readable_by_tarfile(self, context_dir):
        archive = build_context_tar(str(context_dir))
        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            members = {m.name: m for m in tar.getmembers()}
            assert members["sub"].isdir()
            assert members["sub/data.txt"].isfile()
            assert members["sub/data.txt"].uname == "root"
            assert tar.extractfile("sub/data.txt").read() == b"0123456789"

    def test_file_content_padded_to_block(self, tmp_path):
        (tmp_path / "Dockerfile").write_bytes(b"FROM alpine\n")
        archive = build_context_tar(str(tmp_path))
        content = archive[BLOCK_SIZE:2 * BLOCK_SIZE]
        assert content.startswith(b"FROM alpine\n")
        assert content[len(b"FROM alpine\n"):] == b"\0" * (BLOCK_SIZE - len(b"FROM alpine\n"))

    def test_exact_block_file_needs_no_padding(self, tmp_path):
        (tmp_path / "blob").write_bytes(b"x" * BLOCK_SIZE)
        archive = build_context_tar(str(tmp_path))
        assert len(archive) == BLOCK_SIZE + BLOCK_SIZE + 2 * BLOCK_SIZE

    def test_symlinks_are_skipped(self, tmp_path):
        (tmp_path / "real.txt").write_text("hi")
        os.symlink(tmp_path / "real.txt", tmp_path / "link.txt")
        names = [entry.path for entry, _ in iter_entries(str(tmp_path))]
        assert names == ["real.txt"]

    def test_mode_is_preserved(self, tmp_path):
        script = tmp_path / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o750)
        archive = build_context_tar(str(tmp_path))
        assert archive[100:108] == b"0000750\0"

    def test_empty_directory(self, tmp_path):
        assert build_context_tar(str(tmp_path)) == b"\0" * 1024

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            build_context_tar(str(tmp_path / "nope"))
