"""ustar archive writer for image build contexts."""

import logging
import os
import stat
from typing import Iterator

from sockbox.models import TarEntry

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
REGULAR_FILE = b"0"
DIRECTORY = b"5"


def _octal(value: int, width: int) -> bytes:
    """Zero-padded octal number filling ``width`` bytes, NUL terminated."""
    digits = width - 1
    text = format(value, "o")
    if len(text) > digits:
        raise ValueError(f"value {value} does not fit in a {width}-byte tar field")
    return text.rjust(digits, "0").encode("ascii") + b"\0"


def _put(header: bytearray, offset: int, width: int, value: bytes) -> None:
    header[offset:offset + len(value[:width])] = value[:width]


def _split_name(name: str) -> tuple[bytes, bytes]:
    """Return ``(prefix, name)``; long paths use the ustar prefix field."""
    raw = name.encode("utf-8")
    if len(raw) <= 100:
        return b"", raw

    # Split at a slash so the prefix holds up to 155 bytes and the name up to 100.
    for idx in range(len(raw) - 1, 0, -1):
        if raw[idx:idx + 1] != b"/":
            continue
        prefix, rest = raw[:idx], raw[idx + 1:]
        if len(prefix) <= 155 and 0 < len(rest) <= 100:
            return prefix, rest
    raise ValueError(f"path too long for a ustar header: {name}")


def checksum(header: bytes) -> int:
    """Unsigned byte sum with the checksum field counted as spaces."""
    return sum(header[:148]) + 8 * ord(" ") + sum(header[156:BLOCK_SIZE])


def tar_header(entry: TarEntry) -> bytes:
    """Build the 512-byte ustar header for one entry."""
    name = entry.path + "/" if entry.is_dir and not entry.path.endswith("/") else entry.path
    prefix, short_name = _split_name(name)

    header = bytearray(BLOCK_SIZE)
    _put(header, 0, 100, short_name)
    _put(header, 100, 8, _octal(entry.mode, 8))
    _put(header, 108, 8, _octal(0, 8))
    _put(header, 116, 8, _octal(0, 8))
    _put(header, 124, 12, _octal(0 if entry.is_dir else entry.size, 12))
    _put(header, 136, 12, _octal(entry.mtime, 12))
    _put(header, 148, 8, b" " * 8)
    _put(header, 156, 1, DIRECTORY if entry.is_dir else REGULAR_FILE)
    _put(header, 257, 6, b"ustar\0")
    _put(header, 263, 2, b"00")
    _put(header, 265, 32, b"root")
    _put(header, 297, 32, b"root")
    _put(header, 345, 155, prefix)

    _put(header, 148, 8, format(checksum(header), "06o").encode("ascii") + b"\0 ")
    return bytes(header)


def _padding(size: int) -> bytes:
    remainder = size % BLOCK_SIZE
    return b"\0" * (BLOCK_SIZE - remainder) if remainder else b""


def iter_entries(root: str, _rel: str = "") -> Iterator[tuple[TarEntry, str]]:
    """Walk ``root`` in directory-listing order.

    Yields ``(entry, absolute_path)``. Directories come before their children,
    the root itself is not yielded, and symlinks and special files are skipped.
    """
    with os.scandir(os.path.join(root, _rel) if _rel else root) as listing:
        children = list(listing)

    for child in children:
        rel = f"{_rel}/{child.name}" if _rel else child.name
        if child.is_symlink():
            continue
        st = child.stat(follow_symlinks=False)
        if stat.S_ISDIR(st.st_mode):
            yield TarEntry(
                path=rel,
                size=0,
                mode=stat.S_IMODE(st.st_mode),
                is_dir=True,
                mtime=int(st.st_mtime),
            ), child.path
            yield from iter_entries(root, rel)
        elif stat.S_ISREG(st.st_mode):
            yield TarEntry(
                path=rel,
                size=st.st_size,
                mode=stat.S_IMODE(st.st_mode),
                is_dir=False,
                mtime=int(st.st_mtime),
            ), child.path


def build_context_tar(root: str) -> bytes:
    """Serialize the directory tree at ``root`` into a ustar archive."""
    if not os.path.isdir(root):
        raise NotADirectoryError(f"build context is not a directory: {root}")

    chunks: list[bytes] = []
    count = 0
    for entry, path in iter_entries(root):
        if entry.is_dir:
            chunks.append(tar_header(entry))
        else:
            with open(path, "rb") as f:
                content = f.read()
            # The header must describe what was actually read.
            entry.size = len(content)
            chunks.append(tar_header(entry))
            chunks.append(content)
            chunks.append(_padding(len(content)))
        count += 1

    chunks.append(b"\0" * (BLOCK_SIZE * 2))
    archive = b"".join(chunks)
    logger.debug(f"Built context archive from {root}: {count} entries, {len(archive)} bytes")
    return archive
