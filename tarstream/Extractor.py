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
Materializes a TarEntry sequence under a destination directory.

Entries are applied one by one in stream order. Regular files are written to
a temporary file next to their destination and renamed into place once the
payload, mode, owner and mtime are set, so an entry is either fully applied or
absent. Directory modes and mtimes are applied at the end, deepest first.
"""

import os

from typing import Iterable, Tuple

from tarstream.Entry import TarEntry, EntryKind, CHRTYPE, BLKTYPE, FIFOTYPE, GNUTYPE_VOLHDR
from tarstream.Errors import AccessError, DanglingLinkError, TarError, UnsafePathError, fromOSError
from tarstream.FileSystems import LocalFileSystem
from tarstream.Kernel import getLogger, TarEvent
from tarstream.Settings import ArchiveOptions

logger = getLogger(__name__)

SPECIAL_BITS = 0o7000
PERMISSION_BITS = 0o777


def currentUmask() -> int:
    """Read the process umask (there is no getter, so set and restore it)."""
    mask = os.umask(0)
    os.umask(mask)
    return mask


def isWithin(path: str, root: str) -> bool:
    return os.path.commonpath([path, root]) == root


class ExtractionEngine:
    """
    Recreates archive members on a filesystem.

    The engine owns every filesystem mutation of an extraction and the session
    table used to resolve hard links to members extracted earlier.
    """

    def __init__(self, destinationRoot: str, options: ArchiveOptions = None, fileSystem=None):
        self.options = options or ArchiveOptions()
        self.fileSystem = fileSystem or LocalFileSystem()

        self.root = os.path.abspath(destinationRoot)
        self.realRoot = self.fileSystem.realPath(self.root)
        self.umask = currentUmask()

        self.entryCount = 0

        self._linkTable = {}
        self._deferredDirectories = []

    def extract(self, entries: Iterable[TarEntry]) -> int:
        """
        Extract every entry in order.

        Returns:
            int: Number of entries extracted

        Raises:
            UnsafePathError: If an entry would land outside the destination
            DanglingLinkError: If a hard link refers to a member not extracted before
            AccessError, IoError: On filesystem failures
            CorruptArchiveError: Propagated from the reader
        """
        if not self.fileSystem.isDir(self.realRoot):
            raise AccessError("Cannot open destination: Not a directory", self.root)

        logger.info(f"Extract START: {self.root}")

        completed = False
        try:
            for entry in entries:
                self.extractEntry(entry)
            completed = True
        finally:
            self._finalizeDirectories(strict=completed)

        logger.info(f"Extract END: {self.entryCount} entries")
        return self.entryCount

    def extractEntry(self, entry: TarEntry):
        target, components = self._resolveTarget(entry.name)

        if not components:
            if not entry.isDir():
                raise UnsafePathError("Member name resolves to the destination itself", entry.name)
            logger.debug(f"Skipping {entry.name!r}: destination root")
            self._done(entry)
            return

        self._checkParent(target, entry.name)
        self._ensureParents(target)

        if entry.isDir():
            self._extractDirectory(target, entry)
        elif entry.isFile():
            self._extractFile(target, entry)
        elif entry.isSymlink():
            self._extractSymlink(target, entry)
        elif entry.isHardLink():
            self._extractHardLink(target, entry)
        else:
            self._extractOther(target, entry)

        if not entry.isDir():
            self._linkTable['/'.join(components)] = target

        self._done(entry)

    def _done(self, entry: TarEntry):
        self.entryCount += 1
        self.options.notify(entry)
        TarEvent.entryExtracted.trigger(entry=entry)

    def _resolveTarget(self, name: str) -> Tuple[str, list]:
        """
        Map a member name to its destination path.

        Raises:
            UnsafePathError: For absolute names or '..' components, unless absoluteNames is set
        """
        isAbsolute = name.startswith('/')
        components = [c for c in name.split('/') if c not in ('', '.')]

        if not self.options.absoluteNames:
            if isAbsolute:
                raise UnsafePathError("Refusing to extract absolute path", name)
            if '..' in components:
                raise UnsafePathError("Refusing to extract path containing '..'", name)

        if isAbsolute:
            return os.path.join(os.sep, *components), components

        return os.path.join(self.root, *components), components

    def _checkParent(self, target: str, name: str):
        """Reject targets whose parent resolves outside the root through a symlink."""
        if self.options.absoluteNames:
            return

        realParent = self.fileSystem.realPath(os.path.dirname(target))
        if not isWithin(realParent, self.realRoot):
            raise UnsafePathError("Refusing to extract through a symbolic link leading outside the destination", name)

    def _ensureParents(self, target: str):
        """Create missing ancestors for hand-crafted or reordered archives."""
        missing = []
        parent = os.path.dirname(target)
        while not self.fileSystem.exists(parent):
            missing.append(parent)
            parent = os.path.dirname(parent)

        for path in reversed(missing):
            logger.debug(f"Creating missing ancestor {path}")
            try:
                self.fileSystem.makeDir(path, 0o777)
            except OSError as e:
                raise fromOSError(e, path, "Cannot create directory") from e

    def _clearTarget(self, target: str, name: str):
        """Remove an existing non-directory; an existing directory is an error."""
        if self.fileSystem.isDir(target):
            raise AccessError("Cannot replace existing directory with a non-directory", name)

        if self.fileSystem.exists(target):
            try:
                self.fileSystem.remove(target)
            except OSError as e:
                raise fromOSError(e, target, "Cannot remove existing file") from e

    def _mode(self, entry: TarEntry) -> int:
        if self.options.preservePermissions:
            return entry.mode
        return entry.mode & PERMISSION_BITS & ~self.umask

    def _applyMetadata(self, path: str, entry: TarEntry, isSymlink: bool = False):
        """Owner first (chown clears setuid bits), then mode, then mtime."""
        try:
            if self.options.sameOwner:
                self.fileSystem.setOwner(path, entry.uid, entry.gid)
            if not isSymlink:
                self.fileSystem.setMode(path, self._mode(entry))
            self.fileSystem.setTimes(path, entry.mtime, followSymlinks=not isSymlink)
        except OSError as e:
            raise fromOSError(e, path, "Cannot restore metadata") from e

    def _extractDirectory(self, target: str, entry: TarEntry):
        if self.fileSystem.exists(target):
            if not self.fileSystem.isDir(target):
                raise AccessError("Cannot create directory: a non-directory is in the way", entry.name)
        else:
            try:
                # Owner-writable until the final mode is applied
                self.fileSystem.makeDir(target, 0o700)
            except OSError as e:
                raise fromOSError(e, target, "Cannot create directory") from e

        self._deferredDirectories.append((target, entry))

    def _extractFile(self, target: str, entry: TarEntry):
        if self.fileSystem.isDir(target):
            raise AccessError("Cannot replace existing directory with a file", entry.name)

        try:
            fileobj, tempPath = self.fileSystem.openTemp(os.path.dirname(target))
        except OSError as e:
            raise fromOSError(e, target, "Cannot open") from e

        try:
            with fileobj:
                for chunk in entry.iterChunks(self.options.chunkSize):
                    fileobj.write(chunk)

            self._applyMetadata(tempPath, entry)
            self.fileSystem.replace(tempPath, target)

        except OSError as e:
            self._discard(tempPath)
            raise fromOSError(e, target, "Cannot write") from e
        except BaseException:
            self._discard(tempPath)
            raise

        logger.debug(f"Extracted file {target} ({entry.size} bytes)")

    def _discard(self, tempPath: str):
        try:
            self.fileSystem.remove(tempPath)
        except OSError as e:
            logger.debug(f"Cannot remove temporary file {tempPath}: {e}")

    def _extractSymlink(self, target: str, entry: TarEntry):
        self._clearTarget(target, entry.name)

        try:
            self.fileSystem.makeSymlink(entry.linkname, target)
        except OSError as e:
            raise fromOSError(e, target, "Cannot create symlink") from e

        self._applyMetadata(target, entry, isSymlink=True)

    def _extractHardLink(self, target: str, entry: TarEntry):
        _, components = self._resolveTarget(entry.linkname)
        source = self._linkTable.get('/'.join(components))
        if source is None:
            raise DanglingLinkError(
                f"Cannot hard link to '{entry.linkname}': not extracted earlier in the archive", entry.name
            )

        if source == target:
            logger.debug(f"Hard link {entry.name!r} points to itself")
            return

        self._clearTarget(target, entry.name)

        try:
            self.fileSystem.makeHardLink(source, target)
        except OSError as e:
            raise fromOSError(e, target, "Cannot create hard link") from e

    def _extractOther(self, target: str, entry: TarEntry):
        if entry.typeflag == GNUTYPE_VOLHDR:
            logger.info(f"Volume label {entry.name!r} skipped")
            return

        if entry.typeflag not in (FIFOTYPE, CHRTYPE, BLKTYPE):
            # Unknown types are extracted as regular files
            logger.warning(f"{entry.name}: unknown file type {entry.typeflag!r}, extracted as normal file")
            self._extractFile(target, entry)
            return

        self._clearTarget(target, entry.name)

        mode = self._mode(entry)
        try:
            if entry.typeflag == FIFOTYPE:
                self.fileSystem.makeFifo(target, mode)
            else:
                self.fileSystem.makeDevice(target, mode, entry.devmajor, entry.devminor, entry.typeflag == BLKTYPE)
        except OSError as e:
            raise fromOSError(e, target, "Cannot create special file") from e

        self._applyMetadata(target, entry)

    def _finalizeDirectories(self, strict: bool):
        """
        Apply directory modes and mtimes, deepest first.

        Args:
            strict: Raise on failure; otherwise only log (extraction already failed)
        """
        deferred = sorted(self._deferredDirectories, key=lambda item: item[0].count(os.sep), reverse=True)
        self._deferredDirectories = []

        for path, entry in deferred:
            try:
                self._applyMetadata(path, entry)
            except TarError as e:
                if strict:
                    raise
                logger.error(f"Cannot restore directory metadata after failure: {e}")
