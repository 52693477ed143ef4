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
Error taxonomy shared by the codec, the walker and the extractor.

Every error carries the offending path (when there is one) and the process exit
code the command line front end should use for it.
"""

import errno

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_ARCHIVE = 2


class TarError(RuntimeError):
    """Base class of every error raised by tarstream"""

    exitCode = EXIT_FAILURE

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self):
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class UsageError(TarError):
    """Invalid command line usage"""


class FormatError(TarError):
    """An entry cannot be encoded within the header field limits"""


class EmptyArchiveError(TarError):
    """Raised before any output when there is nothing to archive"""

    def __init__(self, message: str = "Cowardly refusing to create an empty archive", path: str = None):
        super().__init__(message, path)


class CorruptArchiveError(TarError):
    """The byte stream is not a valid archive"""

    exitCode = EXIT_INVALID_ARCHIVE


class ChecksumError(CorruptArchiveError):
    """A header block failed checksum validation"""


class MalformedHeaderError(CorruptArchiveError):
    """A header block or an extension record cannot be parsed"""


class TruncatedArchiveError(CorruptArchiveError):
    """The stream ended before the expected bytes"""


class UnsupportedEntryError(TarError):
    """GNU-only member types this implementation refuses to interpret"""

    exitCode = EXIT_INVALID_ARCHIVE


class AccessError(TarError):
    """A filesystem object cannot be read or created"""


class SymlinkCycleError(AccessError):
    """Following symbolic links leads back to an ancestor directory"""


class UnsafePathError(TarError):
    """An extraction target would land outside the destination directory"""


class DanglingLinkError(TarError):
    """A hard link refers to a member not extracted earlier in the stream"""


class IoError(TarError):
    """Generic I/O failure, the platform error is kept as __cause__"""


_ACCESS_ERRNOS = (errno.ENOENT, errno.EACCES, errno.EPERM, errno.ENOTDIR, errno.EEXIST, errno.EISDIR)


def fromOSError(error: OSError, path: str = None, operation: str = None) -> TarError:
    """
    Translate an OSError into the tarstream taxonomy.

    Args:
        error: The platform error
        path: Path the operation was working on (defaults to error.filename)
        operation: Short description used as message prefix (e.g. "Cannot open")

    Returns:
        TarError: AccessError, SymlinkCycleError or IoError. The caller raises it
                  with ``from error`` to keep the original chain.
    """
    if path is None and error.filename is not None:
        path = str(error.filename)

    reason = error.strerror or str(error)
    message = f"{operation}: {reason}" if operation else reason

    if error.errno == errno.ELOOP:
        return SymlinkCycleError(message, path)

    if error.errno in _ACCESS_ERRNOS:
        return AccessError(message, path)

    return IoError(message, path)
