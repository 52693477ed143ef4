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
Forward-only archive reader.

The reader never seeks, so it works on pipes and decompressor streams. Each
yielded TarEntry carries a MemberData handle over its payload; moving to the
next entry discards whatever the caller left unread.
"""

import gzip
import lzma
import zlib

from typing import BinaryIO, Iterator

from tarstream.Entry import (
    TarEntry, GNUTYPE_SPARSE, GNUTYPE_MULTIVOL, GNUTYPE_DUMPDIR, GNUTYPE_NAMES
)
from tarstream.Errors import (
    CorruptArchiveError, MalformedHeaderError, TruncatedArchiveError, UnsupportedEntryError, IoError
)
from tarstream.Extension import PendingExtensions, MAX_EXTENSION_SIZE
from tarstream.Header import HeaderCodec, isZeroBlock
from tarstream.Kernel import getLogger, TarEvent
from tarstream.Settings import ArchiveOptions, BLOCK_SIZE, CHUNK_SIZE

logger = getLogger(__name__)

UNSUPPORTED_TYPEFLAGS = {
    GNUTYPE_MULTIVOL: 'multi-volume continuation',
    GNUTYPE_SPARSE: 'sparse file',
    GNUTYPE_DUMPDIR: 'incremental dump directory',
    GNUTYPE_NAMES: 'rename list',
}


class MemberData:
    """
    Streaming handle over one member payload.

    Single use and forward only; it stops working once the reader moves on.
    """

    def __init__(self, reader: 'ArchiveReader', size: int):
        self._reader = reader
        self.size = size
        self.remaining = size
        self.valid = True

    def read(self, size: int = -1) -> bytes:
        """
        Read up to size bytes (all remaining bytes when size is negative).

        Raises:
            ValueError: If the reader has already moved past this member
            TruncatedArchiveError: If the stream ends inside the payload
        """
        if not self.valid:
            raise ValueError("Member data is no longer available, the reader moved on")

        if size < 0 or size > self.remaining:
            size = self.remaining

        data = self._reader._readExact(size)
        self.remaining -= len(data)
        return data

    def readAll(self) -> bytes:
        return self.read()

    def iterChunks(self, chunkSize: int) -> Iterator[bytes]:
        while self.remaining > 0:
            yield self.read(min(chunkSize, self.remaining))


class ArchiveReader:
    """
    Deserializes a ustar byte stream into TarEntry values.

    Usage:
        for entry in ArchiveReader(fileobj):
            data = entry.data.readAll()

    Raises (while iterating):
        ChecksumError, MalformedHeaderError: On an invalid header
        CorruptArchiveError: If a compression filter reports corrupt data
        TruncatedArchiveError: If the stream ends before the terminator
        UnsupportedEntryError: On GNU multi-volume, sparse, dump dir or rename members
    """

    def __init__(self, fileobj: BinaryIO, chunkSize: int = CHUNK_SIZE, options: ArchiveOptions = None):
        self.fileobj = fileobj
        self.chunkSize = chunkSize
        self.options = options
        self.name = getattr(fileobj, 'name', None)

        self.offset = 0
        self.entryCount = 0

        self._current = None
        self._padding = 0

    def __iter__(self) -> Iterator[TarEntry]:
        return self.iterEntries()

    def iterEntries(self) -> Iterator[TarEntry]:
        pending = PendingExtensions()
        logger.info(f"Read START: {self.name or 'stream'}")

        while True:
            self._finishCurrent()

            headerOffset = self.offset
            block = self._readBlock()
            if isZeroBlock(block):
                self._readTerminator(pending)
                break

            try:
                header = HeaderCodec.decode(block)
            except CorruptArchiveError as e:
                e.path = e.path or self.name
                raise
            logger.debug(f"Header at {headerOffset}: {header.name!r} typeflag {header.typeflag!r}")

            if header.typeflag in UNSUPPORTED_TYPEFLAGS:
                raise UnsupportedEntryError(
                    f"GNU {UNSUPPORTED_TYPEFLAGS[header.typeflag]} members are not supported", header.name
                )

            if PendingExtensions.isExtension(header.typeflag):
                pending.absorb(header, self._readExtensionPayload(header))
                continue

            entry = pending.apply(header)
            size = entry.size if entry.hasPayload() else 0

            entry.data = MemberData(self, size)
            self._current = entry.data
            self._padding = -size % BLOCK_SIZE
            self.entryCount += 1

            if self.options:
                self.options.notify(entry)
            TarEvent.entryListed.trigger(entry=entry)

            yield entry

        logger.info(f"Read END: {self.entryCount} entries, {self.offset} bytes")

    def _readTerminator(self, pending: PendingExtensions):
        if pending.hasPending():
            raise MalformedHeaderError("Extension header at end of archive without a member")

        second = self._readAvailable(BLOCK_SIZE)
        if not second:
            logger.warning(f"A lone zero block at {self.offset - BLOCK_SIZE}")
            return

        if len(second) < BLOCK_SIZE:
            raise TruncatedArchiveError("Unexpected EOF in archive terminator", self.name)

        # Data after a lone zero block is never read
        if not isZeroBlock(second):
            logger.warning(f"A lone zero block at {self.offset - 2 * BLOCK_SIZE}")

    def _readExtensionPayload(self, header: TarEntry) -> bytes:
        if header.size > MAX_EXTENSION_SIZE:
            raise MalformedHeaderError(f"Extension header of {header.size} bytes is too large", header.name)

        payload = self._readExact(header.size)
        self._skip(-header.size % BLOCK_SIZE)
        return payload

    def _finishCurrent(self):
        """Discard the unread rest of the current payload and its padding."""
        if self._current is None:
            return

        current = self._current
        self._current = None
        current.valid = False

        self._skip(current.remaining + self._padding)
        current.remaining = 0
        self._padding = 0

    def _read(self, size: int) -> bytes:
        try:
            return self.fileobj.read(size)
        except EOFError as e:
            # Decompressors report a cut stream this way
            raise TruncatedArchiveError(f"Compressed stream ended early: {e}", self.name) from e
        except (lzma.LZMAError, zlib.error, gzip.BadGzipFile) as e:
            raise CorruptArchiveError(f"Compressed stream is corrupt: {e}", self.name) from e
        except OSError as e:
            raise IoError(f"Read failed: {e.strerror or e}", self.name) from e

    def _readBlock(self) -> bytes:
        return self._readExact(BLOCK_SIZE, "Unexpected EOF in archive")

    def _readAvailable(self, size: int) -> bytes:
        """Read up to size bytes, looping over short reads of pipes until EOF."""
        parts = []
        missing = size
        while missing > 0:
            data = self._read(missing)
            if not data:
                break
            parts.append(data)
            missing -= len(data)
            self.offset += len(data)

        return b''.join(parts)

    def _readExact(self, size: int, message: str = "Unexpected EOF in archive member") -> bytes:
        """
        Read exactly size bytes, looping over short reads of pipes.

        Raises:
            TruncatedArchiveError: If the stream ends first
        """
        data = self._readAvailable(size)
        if len(data) < size:
            raise TruncatedArchiveError(f"{message} at offset {self.offset}", self.name)
        return data

    def _skip(self, size: int):
        while size > 0:
            step = min(size, self.chunkSize)
            self._readExact(step)
            size -= step
