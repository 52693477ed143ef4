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
Compression filters wrapped around the archive byte stream.

The codec never looks at compression framing: these helpers only return a
binary file object that compresses on write or decompresses on read.
"""

import bz2
import gzip
import lzma
import sys

from typing import BinaryIO

from tarstream.Errors import UsageError, fromOSError
from tarstream.Kernel import getLogger

logger = getLogger(__name__)

COMPRESSION_NONE = None
COMPRESSION_GZIP = 'gzip'
COMPRESSION_BZIP2 = 'bzip2'
COMPRESSION_XZ = 'xz'

COMPRESSIONS = (COMPRESSION_GZIP, COMPRESSION_BZIP2, COMPRESSION_XZ)

STDIO_PATH = '-'

_MAGICS = (
    (b'\x1f\x8b', COMPRESSION_GZIP),
    (b'BZh', COMPRESSION_BZIP2),
    (b'\xfd7zXZ\x00', COMPRESSION_XZ),
)

_SUFFIXES = {
    '.gz': COMPRESSION_GZIP, '.tgz': COMPRESSION_GZIP,
    '.bz2': COMPRESSION_BZIP2, '.tbz': COMPRESSION_BZIP2, '.tbz2': COMPRESSION_BZIP2,
    '.xz': COMPRESSION_XZ, '.txz': COMPRESSION_XZ,
}


def detectCompression(header: bytes):
    """Identify the compression of a stream from its first bytes (None = plain)."""
    for magic, compression in _MAGICS:
        if header.startswith(magic):
            return compression
    return COMPRESSION_NONE


def compressionFromName(path: str):
    """Guess the compression from an archive file name suffix."""
    lowered = path.lower()
    for suffix, compression in _SUFFIXES.items():
        if lowered.endswith(suffix):
            return compression
    return COMPRESSION_NONE


def _wrap(fileobj: BinaryIO, mode: str, compression) -> BinaryIO:
    if compression == COMPRESSION_GZIP:
        return gzip.GzipFile(fileobj=fileobj, mode=mode)
    if compression == COMPRESSION_BZIP2:
        return bz2.BZ2File(fileobj, mode=mode)
    if compression == COMPRESSION_XZ:
        return lzma.LZMAFile(fileobj, mode=mode)
    return fileobj


class ArchiveFile:
    """
    Binary stream for an archive path, with an optional compression filter.

    Usage:
        with ArchiveFile('backup.tar.gz', 'w', 'gzip') as f:
            ArchiveWriter(f).write(entries)

    In read mode with compression=None the filter is detected from the magic
    bytes. The path '-' means stdin/stdout, which are never closed.
    """

    def __init__(self, path: str, mode: str = 'r', compression=COMPRESSION_NONE):
        if mode not in ('r', 'w'):
            raise ValueError(f"Invalid mode: {mode}")

        if compression is not None and compression not in COMPRESSIONS:
            raise UsageError(f"Unknown compression: {compression}")

        self.path = path
        self.mode = mode
        self.compression = compression

        self._raw = None
        self._stream = None

    @property
    def name(self):
        return self.path

    def open(self) -> BinaryIO:
        if self.path == STDIO_PATH:
            self._raw = sys.stdin.buffer if self.mode == 'r' else sys.stdout.buffer
        else:
            try:
                self._raw = open(self.path, self.mode + 'b')
            except OSError as e:
                raise fromOSError(e, self.path, "Cannot open") from e

        if self.mode == 'r' and self.compression is None:
            self.compression = self._sniff()

        logger.debug(f"Archive {self.path} opened ({self.mode}, compression {self.compression or 'none'})")
        self._stream = _wrap(self._raw, self.mode, self.compression)
        return self._stream

    def _sniff(self):
        """Peek the first bytes without consuming them."""
        peek = getattr(self._raw, 'peek', None)
        if peek is None:
            return COMPRESSION_NONE
        return detectCompression(peek(8)[:8])

    def close(self):
        try:
            if self._stream is not None and self._stream is not self._raw:
                self._stream.close()
        finally:
            if self._raw is not None and self.path != STDIO_PATH:
                self._raw.close()
            elif self._raw is not None and self.mode == 'w':
                self._raw.flush()
            self._stream = None
            self._raw = None

    def __enter__(self) -> BinaryIO:
        return self.open()

    def __exit__(self, excType, excVal, excTb):
        self.close()
