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

import os

from typing import Iterable, Iterator, Optional

try:
    import grp
    import pwd
except ImportError: # Not available on Windows
    grp = pwd = None

from tarstream.Entry import TarEntry, EntryKind, FileData, CHRTYPE, BLKTYPE, FIFOTYPE
from tarstream.Errors import TarError, SymlinkCycleError, fromOSError
from tarstream.FileSystems import LocalFileSystem, Stat
from tarstream.Kernel import getLogger
from tarstream.Settings import ArchiveOptions
from tarstream.Utils import encodeName

logger = getLogger(__name__)


class DirectoryWalker:
    """
    Turns filesystem subtrees into a lazy, deterministic TarEntry sequence.

    Directories come before their descendants and siblings are visited in the
    byte order of their encoded names, so the same tree always produces the same
    archive. The walker never modifies the filesystem.
    """

    def __init__(self, options: ArchiveOptions = None, fileSystem=None):
        self.options = options or ArchiveOptions()
        self.fileSystem = fileSystem or LocalFileSystem()

        # Errors skipped in collectErrors mode, in encounter order
        self.errors = []

        self._hardLinks = {}
        self._userNames = {}
        self._groupNames = {}
        self._warnedLeadingSlash = False

    def walkAll(self, paths: Iterable[str]) -> Iterator[TarEntry]:
        """Walk several roots one after the other, sharing hard link detection."""
        for path in paths:
            yield from self.walk(path)

    def walk(self, rootPath: str) -> Iterator[TarEntry]:
        """
        Walk one subtree in pre-order.

        Args:
            rootPath: File or directory to archive; its path becomes the arc name prefix

        Yields:
            TarEntry: One entry per filesystem object

        Raises:
            AccessError: On the first unreadable path, unless collectErrors is set
            SymlinkCycleError: When dereferencing leads back to an ancestor directory
        """
        logger.debug(f"Walk START: {rootPath}")
        yield from self._visit(rootPath, self._arcName(rootPath), frozenset())
        logger.debug(f"Walk END: {rootPath}")

    def _arcName(self, path: str) -> str:
        name = path.replace(os.sep, '/') if os.sep != '/' else path

        if not self.options.absoluteNames and name.startswith('/'):
            if not self._warnedLeadingSlash:
                logger.warning("Removing leading '/' from member names")
                self._warnedLeadingSlash = True
            name = name.lstrip('/')

        if name != '/':
            name = name.rstrip('/')
        return name or '.'

    def _handleIOError(self, error: OSError, path: str, operation: str):
        """
        Translate an OSError, then raise it or record it depending on collectErrors.

        Raises:
            AccessError, SymlinkCycleError, IoError: Unless collectErrors is set
        """
        tarError = fromOSError(error, path, operation)
        self._fail(tarError, error)

    def _fail(self, tarError: TarError, cause: Optional[BaseException] = None):
        if not self.options.collectErrors:
            raise tarError from cause

        logger.error(f"Skipping {tarError}")
        self.errors.append(tarError)

    def _readMetadata(self, path: str, followSymlinks: bool = False) -> Optional[Stat]:
        try:
            return self.fileSystem.readMetadata(path, followSymlinks=followSymlinks)
        except OSError as e:
            self._handleIOError(e, path, "Cannot stat")
            return None

    def _visit(self, path: str, arcName: str, ancestors: frozenset) -> Iterator[TarEntry]:
        st = self._readMetadata(path)
        if st is None:
            return

        if st.isSymlink() and self.options.dereferenceSymlinks:
            target = self._readMetadata(path, followSymlinks=True)
            if target is None:
                return
            st = target

        if st.isDir():
            yield from self._visitDirectory(path, arcName, st, ancestors)
        elif st.isFile():
            yield self._fileEntry(path, arcName, st)
        elif st.isSymlink():
            try:
                target = self.fileSystem.readLink(path)
            except OSError as e:
                self._handleIOError(e, path, "Cannot read link")
                return
            yield self._makeEntry(arcName, EntryKind.SYMLINK, st, linkname=target, sourcePath=path)
        elif st.isFifo():
            yield self._makeEntry(arcName, EntryKind.OTHER, st, typeflag=FIFOTYPE, sourcePath=path)
        elif st.isCharDevice() or st.isBlockDevice():
            typeflag = BLKTYPE if st.isBlockDevice() else CHRTYPE
            yield self._makeEntry(
                arcName, EntryKind.OTHER, st, typeflag=typeflag, devmajor=os.major(st.rdev),
                devminor=os.minor(st.rdev), sourcePath=path,
            )
        elif st.isSocket():
            logger.warning(f"{path}: socket ignored")
        else:
            logger.warning(f"{path}: unknown file type ignored")

    def _visitDirectory(self, path: str, arcName: str, st: Stat, ancestors: frozenset) -> Iterator[TarEntry]:
        if st.identity in ancestors:
            self._fail(SymlinkCycleError("Symbolic link loop back to an ancestor directory", path))
            return

        name = arcName if arcName.endswith('/') else arcName + '/'
        yield self._makeEntry(name, EntryKind.DIRECTORY, st, sourcePath=path)

        try:
            children = self.fileSystem.listDir(path)
        except OSError as e:
            self._handleIOError(e, path, "Cannot open directory")
            return

        # Deterministic traversal order
        children.sort(key=encodeName)

        ancestors = ancestors | {st.identity}
        for child in children:
            yield from self._visit(os.path.join(path, child), name + child, ancestors)

    def _fileEntry(self, path: str, arcName: str, st: Stat) -> TarEntry:
        if st.nlink > 1:
            firstName = self._hardLinks.get(st.identity)
            if firstName is not None:
                return self._makeEntry(arcName, EntryKind.HARDLINK, st, linkname=firstName, sourcePath=path)
            self._hardLinks[st.identity] = arcName

        return self._makeEntry(
            arcName, EntryKind.REGULAR, st, size=st.size, data=FileData(self.fileSystem, path), sourcePath=path,
        )

    def _makeEntry(self, name: str, kind: EntryKind, st: Stat, **kwargs) -> TarEntry:
        entry = TarEntry(
            name=name, kind=kind, mode=st.permissions, uid=st.uid, gid=st.gid, mtime=st.mtime,
            uname=self._userName(st.uid), gname=self._groupName(st.gid), **kwargs
        )
        logger.debug(f"Walked {entry.name!r} ({kind.value})")
        return entry

    def _userName(self, uid: int) -> str:
        if uid not in self._userNames:
            name = ''
            if pwd is not None:
                try:
                    name = pwd.getpwuid(uid).pw_name
                except KeyError:
                    pass
            self._userNames[uid] = name
        return self._userNames[uid]

    def _groupName(self, gid: int) -> str:
        if gid not in self._groupNames:
            name = ''
            if grp is not None:
                try:
                    name = grp.getgrgid(gid).gr_name
                except KeyError:
                    pass
            self._groupNames[gid] = name
        return self._groupNames[gid]
