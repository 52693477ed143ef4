#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# tarstream - streaming ustar archiver
# Copyright (C) 2025-2026 tarstream contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
In-memory representation of one archive member.

A TarEntry is produced either by the DirectoryWalker (from the live filesystem)
or by the ArchiveReader (from header blocks) and consumed exactly once by the
ArchiveWriter or the ExtractionEngine. The payload is never held as a whole:
``entry.data`` is a chunk source exposing ``iterChunks(chunkSize)``.
"""

import stat

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

# Typeflags (single byte at offset 156 of a header)
REGTYPE = b'0'
AREGTYPE = b'\0'
LNKTYPE = b'1'
SYMTYPE = b'2'
CHRTYPE = b'3'
BLKTYPE = b'4'
DIRTYPE = b'5'
FIFOTYPE = b'6'
CONTTYPE = b'7'

# Extension typeflags, consumed by the reader and never surfaced as entries
GNUTYPE_LONGNAME = b'L'
GNUTYPE_LONGLINK = b'K'
XHDTYPE = b'x'
XGLTYPE = b'g'

# GNU-only typeflags
GNUTYPE_SPARSE = b'S'
GNUTYPE_MULTIVOL = b'M'
GNUTYPE_DUMPDIR = b'D'
GNUTYPE_NAMES = b'N'
GNUTYPE_VOLHDR = b'V'

MODE_MASK = 0o7777


class EntryKind(Enum):
    """Closed set of member kinds; consumers handle all five."""
    REGULAR = 'regular'
    DIRECTORY = 'directory'
    SYMLINK = 'symlink'
    HARDLINK = 'hardlink'
    OTHER = 'other'

    @classmethod
    def fromTypeflag(cls, typeflag: bytes) -> 'EntryKind':
        if typeflag in (REGTYPE, AREGTYPE, CONTTYPE):
            return cls.REGULAR
        if typeflag == DIRTYPE:
            return cls.DIRECTORY
        if typeflag == SYMTYPE:
            return cls.SYMLINK
        if typeflag == LNKTYPE:
            return cls.HARDLINK
        return cls.OTHER

    def toTypeflag(self) -> bytes:
        return _KIND_TYPEFLAGS[self]


_KIND_TYPEFLAGS = {
    EntryKind.REGULAR: REGTYPE,
    EntryKind.DIRECTORY: DIRTYPE,
    EntryKind.SYMLINK: SYMTYPE,
    EntryKind.HARDLINK: LNKTYPE,
    EntryKind.OTHER: None,
}

# ls -l style type characters
_KIND_CHARS = {
    EntryKind.REGULAR: '-',
    EntryKind.DIRECTORY: 'd',
    EntryKind.SYMLINK: 'l',
    EntryKind.HARDLINK: 'h',
}
_OTHER_CHARS = {CHRTYPE: 'c', BLKTYPE: 'b', FIFOTYPE: 'p'}


class BytesData:
    """Chunk source over an in-memory payload (small files, tests)."""

    def __init__(self, payload: bytes):
        self.payload = bytes(payload)

    @property
    def size(self) -> int:
        return len(self.payload)

    def iterChunks(self, chunkSize: int) -> Iterator[bytes]:
        for offset in range(0, len(self.payload), chunkSize):
            yield self.payload[offset:offset + chunkSize]


class FileData:
    """Chunk source reading a file lazily through a FileSystem."""

    def __init__(self, fileSystem, path: str):
        self.fileSystem = fileSystem
        self.path = path

    def iterChunks(self, chunkSize: int) -> Iterator[bytes]:
        with self.fileSystem.openRead(self.path) as f:
            while True:
                chunk = f.read(chunkSize)
                if not chunk:
                    break
                yield chunk


@dataclass
class TarEntry:
    """
    One archive member: metadata plus a lazy data handle.

    Names are str; bytes that are not valid UTF-8 survive as surrogate escapes
    so that encoding back yields the original bytes.
    """
    name: str
    kind: EntryKind = EntryKind.REGULAR
    size: int = 0
    mode: int = 0o644
    uid: int = 0
    gid: int = 0
    mtime: int = 0
    linkname: str = ''
    uname: str = ''
    gname: str = ''
    typeflag: Optional[bytes] = None
    devmajor: int = 0
    devminor: int = 0
    paxHeaders: dict = field(default_factory=dict)
    data: object = field(default=None, repr=False, compare=False)
    sourcePath: Optional[str] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.mode &= MODE_MASK

        if self.typeflag is None:
            self.typeflag = self.kind.toTypeflag()
            if self.typeflag is None:
                raise ValueError(f"OTHER entries need an explicit typeflag: {self.name!r}")

    @classmethod
    def fromBytes(cls, name: str, payload: bytes, **kwargs) -> 'TarEntry':
        """Convenience constructor for a regular file with an in-memory payload."""
        return cls(name=name, kind=EntryKind.REGULAR, size=len(payload), data=BytesData(payload), **kwargs)

    def isFile(self) -> bool:
        return self.kind == EntryKind.REGULAR

    def isDir(self) -> bool:
        return self.kind == EntryKind.DIRECTORY

    def isSymlink(self) -> bool:
        return self.kind == EntryKind.SYMLINK

    def isHardLink(self) -> bool:
        return self.kind == EntryKind.HARDLINK

    def isOther(self) -> bool:
        return self.kind == EntryKind.OTHER

    def hasPayload(self) -> bool:
        """Whether payload blocks follow this member's header on the wire."""
        if self.size <= 0:
            return False
        if self.kind == EntryKind.REGULAR:
            return True
        # Unknown typeflags carry data and are read like regular files
        return self.kind == EntryKind.OTHER and self.typeflag not in (CHRTYPE, BLKTYPE, FIFOTYPE)

    def iterChunks(self, chunkSize: int) -> Iterator[bytes]:
        if self.data is None:
            return iter(())
        return self.data.iterChunks(chunkSize)

    def modeString(self) -> str:
        """ls -l style permission string, e.g. '-rwxr-xr-x'."""
        if self.kind == EntryKind.OTHER:
            typeChar = _OTHER_CHARS.get(self.typeflag, '?')
        else:
            typeChar = _KIND_CHARS[self.kind]

        # stat.filemode expects a file type; its first character is replaced below
        return typeChar + stat.filemode(stat.S_IFREG | self.mode)[1:]
