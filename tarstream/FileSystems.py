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
FileSystem abstraction for the walker and the extraction engine.

The walker only uses the read side (readMetadata, listDir, readLink, openRead);
every mutation goes through the extraction engine. Implementations raise
OSError like the os module does; callers translate it with Errors.fromOSError.
"""

import os
import tempfile
import stat as _stat

from dataclasses import dataclass
from typing import BinaryIO, List, Protocol, Tuple

from tarstream.Kernel import getLogger

logger = getLogger(__name__)

TEMP_PREFIX = '.tarstream-'


@dataclass
class Stat:
    """File metadata, without following a final symlink unless asked to"""
    mode: int
    size: int
    mtime: int
    uid: int
    gid: int
    dev: int
    ino: int
    nlink: int
    rdev: int = 0

    @classmethod
    def fromStatResult(cls, st: os.stat_result) -> 'Stat':
        return cls(
            mode=st.st_mode, size=int(st.st_size), mtime=max(0, int(st.st_mtime)), uid=st.st_uid, gid=st.st_gid,
            dev=st.st_dev, ino=st.st_ino, nlink=st.st_nlink, rdev=getattr(st, 'st_rdev', 0),
        )

    @property
    def permissions(self) -> int:
        return _stat.S_IMODE(self.mode)

    @property
    def identity(self) -> Tuple[int, int]:
        return self.dev, self.ino

    def isDir(self) -> bool:
        return _stat.S_ISDIR(self.mode)

    def isFile(self) -> bool:
        return _stat.S_ISREG(self.mode)

    def isSymlink(self) -> bool:
        return _stat.S_ISLNK(self.mode)

    def isFifo(self) -> bool:
        return _stat.S_ISFIFO(self.mode)

    def isCharDevice(self) -> bool:
        return _stat.S_ISCHR(self.mode)

    def isBlockDevice(self) -> bool:
        return _stat.S_ISBLK(self.mode)

    def isSocket(self) -> bool:
        return _stat.S_ISSOCK(self.mode)


class FileSystem(Protocol):
    """FileSystem protocol that all implementations must follow"""

    def readMetadata(self, path: str, followSymlinks: bool = False) -> Stat:
        ...

    def listDir(self, path: str) -> List[str]:
        ...

    def readLink(self, path: str) -> str:
        ...

    def openRead(self, path: str) -> BinaryIO:
        ...

    def makeDir(self, path: str, mode: int = 0o700) -> None:
        ...

    def openTemp(self, directory: str) -> Tuple[BinaryIO, str]:
        ...

    def replace(self, source: str, destination: str) -> None:
        ...

    def makeSymlink(self, target: str, path: str) -> None:
        ...

    def makeHardLink(self, target: str, path: str) -> None:
        ...

    def makeFifo(self, path: str, mode: int) -> None:
        ...

    def makeDevice(self, path: str, mode: int, major: int, minor: int, isBlock: bool) -> None:
        ...

    def remove(self, path: str) -> None:
        ...

    def setMode(self, path: str, mode: int) -> None:
        ...

    def setTimes(self, path: str, mtime: int, followSymlinks: bool = True) -> None:
        ...

    def setOwner(self, path: str, uid: int, gid: int) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...

    def isDir(self, path: str) -> bool:
        ...

    def realPath(self, path: str) -> str:
        ...


class LocalFileSystem:
    """
    Local filesystem backend.

    Wraps os.* calls to provide the FileSystem interface.
    """

    def readMetadata(self, path: str, followSymlinks: bool = False) -> Stat:
        """
        Get metadata of a path.

        Args:
            path: Path to inspect
            followSymlinks: stat() the link target instead of the link itself

        Returns:
            Stat object
        """
        st = os.stat(path) if followSymlinks else os.lstat(path)
        return Stat.fromStatResult(st)

    def listDir(self, path: str) -> List[str]:
        """Directory children names, unsorted"""
        return os.listdir(path)

    def readLink(self, path: str) -> str:
        return os.readlink(path)

    def openRead(self, path: str) -> BinaryIO:
        """
        Open file for reading.

        Args:
            path: Path to file

        Returns:
            Binary file object
        """
        return open(path, 'rb')

    def makeDir(self, path: str, mode: int = 0o700) -> None:
        os.mkdir(path, mode)

    def openTemp(self, directory: str) -> Tuple[BinaryIO, str]:
        """
        Create an anonymous file next to its final destination.

        Returns:
            (file object opened for binary writing, temporary path)
        """
        fd, tempPath = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
        return os.fdopen(fd, 'wb'), tempPath

    def replace(self, source: str, destination: str) -> None:
        """Atomically rename source over destination"""
        os.replace(source, destination)

    def makeSymlink(self, target: str, path: str) -> None:
        os.symlink(target, path)

    def makeHardLink(self, target: str, path: str) -> None:
        # Link to the target path itself, even if it is a symlink
        os.link(target, path, follow_symlinks=False)

    def makeFifo(self, path: str, mode: int) -> None:
        os.mkfifo(path, mode)

    def makeDevice(self, path: str, mode: int, major: int, minor: int, isBlock: bool) -> None:
        fileType = _stat.S_IFBLK if isBlock else _stat.S_IFCHR
        os.mknod(path, mode | fileType, os.makedev(major, minor))

    def remove(self, path: str) -> None:
        """Remove a file or a symlink (never a directory)"""
        os.unlink(path)

    def setMode(self, path: str, mode: int) -> None:
        os.chmod(path, mode)

    def setTimes(self, path: str, mtime: int, followSymlinks: bool = True) -> None:
        """Set access and modification time to mtime"""
        if not followSymlinks and os.utime not in os.supports_follow_symlinks:
            logger.debug(f"Cannot set times of symlink {path} on this platform")
            return
        os.utime(path, (mtime, mtime), follow_symlinks=followSymlinks)

    def setOwner(self, path: str, uid: int, gid: int) -> None:
        os.lchown(path, uid, gid)

    def exists(self, path: str) -> bool:
        """Check if path exists (a dangling symlink exists)"""
        return os.path.lexists(path)

    def isDir(self, path: str) -> bool:
        """Check if path is a real directory (not a symlink to one)"""
        try:
            return _stat.S_ISDIR(os.lstat(path).st_mode)
        except OSError:
            return False

    def realPath(self, path: str) -> str:
        return os.path.realpath(path)
