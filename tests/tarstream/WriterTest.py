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

import io
import os
import shutil
import tarfile
import tempfile
import unittest

from tarstream.Entry import TarEntry, EntryKind, BytesData
from tarstream.Errors import EmptyArchiveError, FormatError, IoError
from tarstream.Header import HeaderCodec, ZERO_BLOCK
from tarstream.Kernel import TarEvent
from tarstream.Settings import ArchiveOptions, BLOCK_SIZE, FORMAT_GNU, FORMAT_PAX
from tarstream.Walker import DirectoryWalker
from tarstream.Writer import ArchiveWriter, FILE_CHANGED_MESSAGE


def writeArchive(entries, **options):
    options.setdefault('blockingFactor', 1)
    buffer = io.BytesIO()
    ArchiveWriter(buffer, ArchiveOptions(**options)).write(entries)
    return buffer.getvalue()


class ShrinkingData:
    """Chunk source that delivers fewer bytes than announced"""

    def iterChunks(self, chunkSize):
        yield b'abc'


class ArchiveWriterTest(unittest.TestCase):

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.originalCwd = os.getcwd()
        os.chdir(self.tempDir)

    def tearDown(self):
        os.chdir(self.originalCwd)
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def testCreateScenario(self):
        with open('a.txt', 'wb') as f:
            f.write(b'hello')
        os.mkdir('b')
        open(os.path.join('b', 'c.txt'), 'wb').close()

        data = writeArchive(DirectoryWalker().walkAll(['a.txt', 'b']))

        # a.txt header + 1 data block, b/ header, b/c.txt header, terminator
        self.assertEqual(len(data), 6 * BLOCK_SIZE)
        self.assertEqual(data[-2 * BLOCK_SIZE:], ZERO_BLOCK * 2)

        header = HeaderCodec.decode(data[:BLOCK_SIZE])
        self.assertEqual((header.name, header.size), ('a.txt', 5))
        self.assertEqual(data[BLOCK_SIZE:BLOCK_SIZE + 5], b'hello')
        self.assertEqual(data[BLOCK_SIZE + 5:2 * BLOCK_SIZE], bytes(BLOCK_SIZE - 5))
        self.assertEqual(HeaderCodec.decode(data[2 * BLOCK_SIZE:3 * BLOCK_SIZE]).name, 'b/')
        self.assertEqual(HeaderCodec.decode(data[3 * BLOCK_SIZE:4 * BLOCK_SIZE]).name, 'b/c.txt')

    def testRecordPadding(self):
        data = writeArchive([TarEntry.fromBytes('a.txt', b'hello')], blockingFactor=20)
        self.assertEqual(len(data), 20 * BLOCK_SIZE)

        data = writeArchive([TarEntry.fromBytes('a.txt', b'x' * 20 * BLOCK_SIZE)], blockingFactor=20)
        self.assertEqual(len(data), 40 * BLOCK_SIZE)

    def testEmptyArchiveRefused(self):
        buffer = io.BytesIO()
        with self.assertRaises(EmptyArchiveError) as context:
            ArchiveWriter(buffer).write([])

        self.assertEqual(buffer.getvalue(), b'')
        self.assertEqual(context.exception.exitCode, 1)
        self.assertIn('empty archive', str(context.exception))

    def testChunksAreExact(self):
        payload = os.urandom(100000)
        writer = ArchiveWriter(options=ArchiveOptions(blockingFactor=1))
        chunks = list(writer.iterChunks([TarEntry.fromBytes('big.bin', payload)], chunkSize=4096))

        self.assertTrue(all(len(chunk) == 4096 for chunk in chunks[:-1]))
        data = b''.join(chunks)
        self.assertEqual(len(data), BLOCK_SIZE + 196 * BLOCK_SIZE + 2 * BLOCK_SIZE)
        self.assertEqual(data[BLOCK_SIZE:BLOCK_SIZE + 100000], payload)
        self.assertEqual(writer.entryCount, 1)
        self.assertEqual(writer.bytesWritten, len(data))

    def testDirectoryNameGetsSlash(self):
        data = writeArchive([TarEntry(name='dir', kind=EntryKind.DIRECTORY, mode=0o755)])
        self.assertEqual(HeaderCodec.decode(data[:BLOCK_SIZE]).name, 'dir/')

    def testFileGrew(self):
        entry = TarEntry(name='x', size=2, data=BytesData(b'abcdef'))
        with self.assertRaises(IoError) as context:
            writeArchive([entry])
        self.assertIn(FILE_CHANGED_MESSAGE, str(context.exception))

    def testFileShrank(self):
        entry = TarEntry(name='x', size=10, data=ShrinkingData())
        with self.assertRaises(IoError) as context:
            writeArchive([entry])
        self.assertIn(FILE_CHANGED_MESSAGE, str(context.exception))

    def testInvalidEntries(self):
        for entry in (TarEntry(name=''), TarEntry(name='a\0b'), TarEntry(name='l', kind=EntryKind.SYMLINK),
                      TarEntry(name='f', size=5)):
            with self.subTest(entry=entry), self.assertRaises(FormatError):
                writeArchive([entry])

    def testVerboseCallbackAndEvent(self):
        seen = []
        events = []

        def onArchived(entry=None, **kwargs):
            events.append(entry.name)

        TarEvent.entryArchived.subscribe(onArchived)
        try:
            writeArchive([TarEntry.fromBytes('a', b'1'), TarEntry.fromBytes('b', b'2')],
                         verboseCallback=lambda entry: seen.append(entry.name))
        finally:
            TarEvent.entryArchived.unsubscribe(onArchived)

        self.assertEqual(seen, ['a', 'b'])
        self.assertEqual(events, ['a', 'b'])

    def makeEntries(self, longName):
        return [
            TarEntry(name='d' * 120, kind=EntryKind.DIRECTORY, mode=0o755),
            TarEntry.fromBytes(longName, b'payload', mode=0o600, mtime=1700000000),
            TarEntry(name='link', kind=EntryKind.SYMLINK, linkname='t' * 150),
        ]

    def testReadableByTarfile(self):
        longName = 'd' * 120 + '/' + 'f' * 129

        for format in (FORMAT_GNU, FORMAT_PAX):
            with self.subTest(format=format):
                data = writeArchive(self.makeEntries(longName), format=format)

                with tarfile.open(fileobj=io.BytesIO(data)) as archive:
                    members = archive.getmembers()
                    self.assertEqual([m.name for m in members], ['d' * 120, longName, 'link'])
                    self.assertEqual(archive.extractfile(members[1]).read(), b'payload')
                    self.assertEqual(members[1].mode, 0o600)
                    self.assertEqual(members[1].mtime, 1700000000)
                    self.assertEqual(members[2].linkname, 't' * 150)

    def testSinkFailure(self):
        class BrokenSink(io.RawIOBase):
            def writable(self):
                return True

            def write(self, data):
                raise OSError(28, 'No space left on device')

        with self.assertRaises(IoError) as context:
            ArchiveWriter(BrokenSink()).write([TarEntry.fromBytes('a', b'1')])
        self.assertIn('No space left', str(context.exception))


if __name__ == '__main__':
    unittest.main()
