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

import errno
import os
import unittest

from unittest.mock import patch

from tarstream.Errors import (
    TarError, AccessError, IoError, SymlinkCycleError, CorruptArchiveError, ChecksumError, TruncatedArchiveError,
    UnsupportedEntryError, UnsafePathError, EmptyArchiveError, fromOSError, EXIT_FAILURE, EXIT_INVALID_ARCHIVE
)
from tarstream.Utils import (
    formatSize, encodeName, decodeName, displayName, getEnv, ONE_KB, ONE_MB, ONE_GB, ONE_TB
)


class TestFormatSize(unittest.TestCase):
    """Test cases for the formatSize utility function."""

    def testUnits(self):
        for size, expected in ((ONE_MB, '1M'), (ONE_GB, '1.1G'), (ONE_TB, '1.10T')):
            with self.subTest(size=size):
                self.assertEqual(formatSize(size), expected)

        self.assertEqual(formatSize(512), '512 Bytes')
        self.assertEqual(formatSize(2000), '2K')
        self.assertIn('K', formatSize(ONE_KB * 10))

    def testDecimal(self):
        self.assertEqual(formatSize(ONE_MB, decimal=2), '1.05M')


class NameEncodingTest(unittest.TestCase):

    def testUtf8(self):
        self.assertEqual(encodeName('héllo'), 'héllo'.encode('utf-8'))
        self.assertEqual(decodeName('héllo'.encode('utf-8')), 'héllo')

    def testInvalidUtf8SurvivesRoundTrip(self):
        raw = b'caf\xe9'
        name = decodeName(raw)
        self.assertEqual(encodeName(name), raw)

    def testBytesPassThrough(self):
        self.assertEqual(encodeName(b'raw'), b'raw')

    def testDisplayName(self):
        self.assertEqual(displayName('plain.txt'), 'plain.txt')
        shown = displayName(decodeName(b'caf\xe9'))
        self.assertTrue(shown.startswith('caf'))
        shown.encode('utf-8')


class GetEnvTest(unittest.TestCase):

    def testTypes(self):
        with patch.dict(os.environ, {'TARSTREAM_INT': '42', 'TARSTREAM_BOOL': 'True', 'TARSTREAM_STR': 'pax'}):
            self.assertEqual(getEnv('TARSTREAM_INT', 1), 42)
            self.assertIs(getEnv('TARSTREAM_BOOL', False), True)
            self.assertEqual(getEnv('TARSTREAM_STR', 'gnu'), 'pax')

    def testDefault(self):
        self.assertEqual(getEnv('TARSTREAM_UNSET_VARIABLE', 20), 20)


class ErrorsTest(unittest.TestCase):

    def testMessageWithPath(self):
        self.assertEqual(str(AccessError('Cannot open: Permission denied', 'a.txt')),
                         'a.txt: Cannot open: Permission denied')
        self.assertEqual(str(TarError('plain')), 'plain')

    def testExitCodes(self):
        self.assertEqual(EmptyArchiveError().exitCode, EXIT_FAILURE)
        self.assertEqual(UnsafePathError('x').exitCode, EXIT_FAILURE)
        self.assertEqual(AccessError('x').exitCode, EXIT_FAILURE)
        for error in (CorruptArchiveError('x'), ChecksumError('x'), TruncatedArchiveError('x'),
                      UnsupportedEntryError('x')):
            self.assertEqual(error.exitCode, EXIT_INVALID_ARCHIVE)

    def testFromOSError(self):
        cases = (
            (errno.ENOENT, AccessError),
            (errno.EACCES, AccessError),
            (errno.EPERM, AccessError),
            (errno.ELOOP, SymlinkCycleError),
            (errno.EIO, IoError),
            (errno.ENOSPC, IoError),
        )
        for code, expected in cases:
            with self.subTest(errno=code):
                error = fromOSError(OSError(code, os.strerror(code), 'some/path'))
                self.assertIs(type(error), expected)
                self.assertEqual(error.path, 'some/path')
                self.assertIn(os.strerror(code), error.message)

    def testFromOSErrorOperation(self):
        error = fromOSError(PermissionError(errno.EACCES, 'Permission denied'), 'x', 'Cannot open')
        self.assertEqual(str(error), 'x: Cannot open: Permission denied')


if __name__ == '__main__':
    unittest.main()
