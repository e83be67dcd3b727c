"""Unpacking of flattened image filesystems and hashing of bundle contents."""

from __future__ import annotations

import hashlib
import io
import logging
import os
import posixpath
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

logger = logging.getLogger(__name__)

HASHES_FILENAME = "hashes.txt"

StrPath = Union[str, "os.PathLike[str]"]


def _clean(path: str) -> str:
    """Lexically normalise ``path``; an empty result becomes ``.``."""
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*parts: str) -> str:
    """Join non-empty parts with ``/`` and normalise the result."""
    joined = "/".join(part for part in parts if part)
    return _clean(joined) if joined else ""


def _dirname(path: str) -> str:
    return _clean(posixpath.dirname(path))


def _ensure_dir(path: str) -> None:
    if not os.path.exists(path):
        os.makedirs(path, mode=0o755, exist_ok=True)


def resolve_link_paths(oldname: str, newname: str) -> tuple[str, str]:
    """Return ``oldname`` relative to ``newname``'s directory, unless it is absolute."""
    if posixpath.isabs(oldname):
        return oldname, newname
    link_dir = _dirname(newname)
    # A relative link at the filesystem root resolves against "/", which
    # strips any ".." reaching above the root.
    if link_dir == ".":
        link_dir = "/"
    return _join(link_dir, oldname), newname


class _PrefixedReader(io.RawIOBase):
    """A reader that yields ``prefix`` before the rest of ``stream``."""

    def __init__(self, prefix: bytes, stream: BinaryIO) -> None:
        self._prefix = prefix
        self._stream = stream

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data, self._prefix = self._prefix, b""
            return data + self._stream.read()
        if self._prefix:
            data, self._prefix = self._prefix[:size], self._prefix[size:]
            if len(data) < size:
                data += self._stream.read(size - len(data))
            return data
        return self._stream.read(size)

    def readinto(self, buffer) -> int:  # type: ignore[override]
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


def _write_regular(target: str, member: tarfile.TarInfo, archive: tarfile.TarFile) -> None:
    _ensure_dir(_dirname(target))
    fd = os.open(target, os.O_CREAT | os.O_RDWR, member.mode)
    with os.fdopen(fd, "wb") as out:
        source = archive.extractfile(member)
        if source is not None:
            shutil.copyfileobj(source, out)


def _make_symlink(dst: str, member: tarfile.TarInfo) -> None:
    nobase_linkname, nobase_name = resolve_link_paths(member.linkname, member.name)
    full_linkname = _join(dst, nobase_linkname)
    full_name = _join(dst, nobase_name)
    if not full_linkname.startswith(dst):
        logger.debug(
            "symlink would reach outside of the image archive, skipping: %s -> %s (resolved to %s)",
            member.name,
            member.linkname,
            full_linkname,
        )
        return
    _ensure_dir(_dirname(full_name))
    try:
        os.symlink(full_linkname, full_name)
    except OSError as exc:
        logger.debug("error creating symlink %s, ignoring: %s", member.name, exc)


def _make_hardlink(dst: str, target: str, member: tarfile.TarInfo) -> None:
    # Hard links are assumed not to carry relative paths in the archive.
    original = _join(dst, member.linkname)
    _ensure_dir(_dirname(target))
    try:
        os.link(original, target)
    except OSError as exc:
        logger.debug("error creating hard link %s, ignoring: %s", member.name, exc)


def untar(dst: StrPath, stream: BinaryIO) -> None:
    """Extract the tar archive read from ``stream`` beneath ``dst``.

    Directories, regular files, symbolic links and hard links are recreated;
    symbolic links that would point outside ``dst`` are skipped, and links
    that cannot be created are ignored. An empty stream is an empty archive.
    """
    dst = os.fspath(dst)
    first = stream.read(1)
    if not first:
        return
    reader = _PrefixedReader(first, stream)
    with tarfile.open(fileobj=reader, mode="r|") as archive:
        for member in archive:
            target = _join(dst, member.name)
            if member.type == tarfile.DIRTYPE:
                _ensure_dir(target)
            elif member.type in (tarfile.REGTYPE, tarfile.AREGTYPE):
                _write_regular(target, member, archive)
            elif member.type == tarfile.SYMTYPE:
                _make_symlink(dst, member)
            elif member.type == tarfile.LNKTYPE:
                _make_hardlink(dst, target, member)


def _walk(root: str, relative: str = "") -> Iterator[tuple[str, os.DirEntry]]:
    """Yield ``(relative path, entry)`` depth first in lexical order."""
    directory = os.path.join(root, relative) if relative else root
    with os.scandir(directory) as scanner:
        entries = sorted(scanner, key=lambda entry: entry.name)
    for entry in entries:
        path = f"{relative}/{entry.name}" if relative else entry.name
        yield path, entry
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(root, path)


def generate_bundle_hash(bundle_path: StrPath, artifacts_dir: Optional[StrPath] = None) -> str:
    """Hash every file beneath ``bundle_path`` except those named Dockerfile.

    Each file's MD5 is listed with its path, sorted by digest; the listing is
    written to ``hashes.txt`` in ``artifacts_dir`` when one is given, and the
    MD5 of the listing is returned. A file that cannot be read ends the walk.
    """
    root = os.fspath(bundle_path)
    files: dict[str, str] = {}
    try:
        for path, entry in _walk(root):
            if entry.name == "Dockerfile" or entry.is_dir(follow_symlinks=False):
                continue
            with open(entry.path, "rb") as handle:
                content = handle.read()
            files[hashlib.md5(content).hexdigest()] = f"./{path}"
    except OSError as exc:
        logger.debug("stopped reading bundle directory %s: %s", root, exc)

    listing = "".join(f"{digest}  {files[digest]}\n" for digest in sorted(files)).encode("utf-8")

    if artifacts_dir is not None:
        Path(artifacts_dir, HASHES_FILENAME).write_bytes(listing)

    total = hashlib.md5(listing).hexdigest()
    logger.debug("md5 sum: %s", total)
    return total