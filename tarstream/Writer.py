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

import itertools

from typing import BinaryIO, Iterable, Iterator

from tarstream.Entry import TarEntry
from tarstream.Errors import EmptyArchiveError, FormatError, IoError, fromOSError
from tarstream.Extension import NameExtension
from tarstream.Header import ZERO_BLOCK
from tarstream.Kernel import getLogger, TarEvent
from tarstream.Settings import ArchiveOptions, BLOCK_SIZE
from tarstream.Utils import formatSize

logger = getLogger(__name__)

FILE_CHANGED_MESSAGE = "file changed as we read it"


class ArchiveWriter:
    """
    Serializes TarEntry sequences into a ustar byte stream.

    Payloads are streamed chunk by chunk and never held whole in memory. The
    archive ends with two zero blocks, then zero padding up to a whole record of
    options.blockingFactor blocks.
    """

    def __init__(self, fileobj: BinaryIO = None, options: ArchiveOptions = None):
        self.fileobj = fileobj
        self.options = options or ArchiveOptions()
        self.name = getattr(fileobj, 'name', None)

        self.entryCount = 0
        self.bytesWritten = 0

    def write(self, entries: Iterable[TarEntry], progress=None) -> int:
        """
        Write a complete archive to the file object.

        Args:
            entries: TarEntry sequence, e.g. from DirectoryWalker.walk()
            progress: Optional Progress whose track() sees every chunk

        Returns:
            int: Number of bytes written

        Raises:
            EmptyArchiveError: If entries is empty (nothing is written)
            FormatError: If an entry cannot be encoded
            IoError: If the sink fails or a source file changed while being read
        """
        if self.fileobj is None:
            raise ValueError("ArchiveWriter.write() needs a file object")

        chunks = self.iterChunks(entries)
        if progress is not None:
            chunks = progress.track(chunks)

        total = 0
        for chunk in chunks:
            try:
                self.fileobj.write(chunk)
            except OSError as e:
                raise IoError(f"Write failed: {e.strerror or e}", self.name) from e
            total += len(chunk)

        try:
            self.fileobj.flush()
        except OSError as e:
            raise IoError(f"Flush failed: {e.strerror or e}", self.name) from e

        return total

    def iterChunks(self, entries: Iterable[TarEntry], chunkSize: int = None) -> Iterator[bytes]:
        """
        Generate the archive as a chunk stream.

        Every chunk except the last one is exactly chunkSize bytes.

        Raises:
            EmptyArchiveError: Before the first chunk when entries is empty
        """
        chunkSize = chunkSize or self.options.chunkSize
        iterator = iter(entries)

        # Peek so that an empty selection fails before any byte is produced
        try:
            first = next(iterator)
        except StopIteration:
            raise EmptyArchiveError()

        logger.info(f"Archive START: {self.name or 'stream'} (format {self.options.format})")

        buffer = bytearray()
        self.entryCount = 0
        self.bytesWritten = 0

        for entry in itertools.chain((first,), iterator):
            self._validate(entry)

            header = NameExtension.build(entry, self.options.format)
            buffer.extend(header)
            self.bytesWritten += len(header)
            logger.debug(f"Header for {entry.name!r}: {len(header) // BLOCK_SIZE} block(s)")

            if entry.hasPayload():
                yield from self._streamPayload(entry, buffer, chunkSize)
            else:
                yield from self._yieldChunks(buffer, chunkSize)

            self.entryCount += 1
            self.options.notify(entry)
            TarEvent.entryArchived.trigger(entry=entry)

        # Terminator, then zeros up to a whole record
        trailer = ZERO_BLOCK * 2
        recordSize = self.options.blockingFactor * BLOCK_SIZE
        trailer += bytes(-(self.bytesWritten + len(trailer)) % recordSize)
        buffer.extend(trailer)
        self.bytesWritten += len(trailer)

        yield from self._yieldChunks(buffer, chunkSize)
        if buffer:
            yield bytes(buffer)

        logger.info(f"Archive END: {self.entryCount} entries, {formatSize(self.bytesWritten)}")

    def _validate(self, entry: TarEntry):
        if not entry.name:
            raise FormatError("Member name is empty")

        if '\0' in entry.name or '\0' in entry.linkname:
            raise FormatError("Member names cannot contain NUL bytes", entry.name)

        if (entry.isSymlink() or entry.isHardLink()) and not entry.linkname:
            raise FormatError("Link entry without a target", entry.name)

        if entry.isDir() and not entry.name.endswith('/'):
            entry.name += '/'

        if entry.size < 0:
            raise FormatError(f"Negative size {entry.size}", entry.name)

        if entry.hasPayload() and entry.data is None:
            raise FormatError(f"No data for {entry.size} byte payload", entry.name)

    def _yieldChunks(self, buffer: bytearray, chunkSize: int):
        """
        Yield chunks from buffer and remove yielded data

        Yields:
            bytes: chunks of exactly chunkSize
        """
        while len(buffer) >= chunkSize:
            yield bytes(buffer[:chunkSize])
            del buffer[:chunkSize]

    def _streamPayload(self, entry: TarEntry, buffer: bytearray, chunkSize: int):
        """
        Stream an entry payload into the buffer, zero padded to a whole block.

        Raises:
            IoError: If the source yields more or fewer bytes than entry.size
            AccessError: If the source cannot be opened
        """
        path = entry.sourcePath or entry.name
        remaining = entry.size

        try:
            for chunk in entry.iterChunks(chunkSize):
                if len(chunk) > remaining:
                    raise IoError(f"{FILE_CHANGED_MESSAGE} (grew beyond {entry.size} bytes)", path)

                buffer.extend(chunk)
                remaining -= len(chunk)
                yield from self._yieldChunks(buffer, chunkSize)

        except OSError as e:
            raise fromOSError(e, path, "Cannot read") from e

        if remaining:
            raise IoError(f"{FILE_CHANGED_MESSAGE} (shrank by {remaining} bytes)", path)

        padding = -entry.size % BLOCK_SIZE
        buffer.extend(bytes(padding))
        self.bytesWritten += entry.size + padding

        yield from self._yieldChunks(buffer, chunkSize)
