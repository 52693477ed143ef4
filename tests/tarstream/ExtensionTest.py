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

import unittest

from tarstream.Entry import (
    TarEntry, EntryKind, GNUTYPE_LONGNAME, GNUTYPE_LONGLINK, XHDTYPE, XGLTYPE, REGTYPE
)
from tarstream.Errors import MalformedHeaderError
from tarstream.Extension import (
    NameExtension, PendingExtensions, encodePaxRecords, decodePaxRecords, padBlock, GNU_LONGLINK_NAME
)
from tarstream.Header import HeaderCodec
from tarstream.Settings import BLOCK_SIZE, FORMAT_GNU, FORMAT_PAX


def longName(directoryLength=120, baseLength=129):
    return 'd' * directoryLength + '/' + 'f' * baseLength


def gnuHeader(typeflag, value):
    return TarEntry(name=GNU_LONGLINK_NAME, kind=EntryKind.OTHER, typeflag=typeflag, size=len(value) + 1)


def paxHeader(typeflag=XHDTYPE):
    return TarEntry(name='PaxHeaders.0/x', kind=EntryKind.OTHER, typeflag=typeflag)


class PaxRecordTest(unittest.TestCase):

    def testLengthCountsItself(self):
        self.assertEqual(encodePaxRecords({'path': 'abc'}), b'12 path=abc\n')

    def testLengthCrossingDigitBoundary(self):
        # 95 + len('path') + 3 = 102, the prefix adds three digits
        record = encodePaxRecords({'path': 'x' * 95})
        self.assertTrue(record.startswith(b'105 path='))
        self.assertEqual(len(record), 105)

        self.assertEqual(encodePaxRecords({'uid': 7}), b'8 uid=7\n')

        record = encodePaxRecords({'k': 'v' * 95})
        self.assertEqual(len(record), int(record.split(b' ', 1)[0]))

    def testDecodeMultipleRecords(self):
        payload = encodePaxRecords({'path': 'a/b', 'mtime': '1700000000.25', 'comment': 'x=y'})
        self.assertEqual(decodePaxRecords(payload), {'path': 'a/b', 'mtime': '1700000000.25', 'comment': 'x=y'})

    def testDecodeStopsAtPadding(self):
        payload = padBlock(encodePaxRecords({'path': 'abc'}))
        self.assertEqual(len(payload), BLOCK_SIZE)
        self.assertEqual(decodePaxRecords(payload), {'path': 'abc'})

    def testUtf8Values(self):
        payload = encodePaxRecords({'path': 'héllo/世界'})
        self.assertEqual(decodePaxRecords(payload), {'path': 'héllo/世界'})

    def testMalformedRecords(self):
        for payload in (b'5 path=abc\n', b'abc path=x\n', b'30 path=x\n', b'11 path=abc', b'9 nokey\n',
                        b'pathabc'):
            with self.subTest(payload=payload), self.assertRaises(MalformedHeaderError):
                decodePaxRecords(payload)


class NameExtensionTest(unittest.TestCase):

    def testShortNameSingleBlock(self):
        for format in (FORMAT_GNU, FORMAT_PAX):
            blocks = NameExtension.build(TarEntry.fromBytes('d' * 90, b'x'), format)
            self.assertEqual(len(blocks), BLOCK_SIZE)

    def testPrefixSplitAvoidsPaxRecord(self):
        name = longName(149, 100)
        blocks = NameExtension.build(TarEntry.fromBytes(name, b''), FORMAT_PAX)
        self.assertEqual(len(blocks), BLOCK_SIZE)
        self.assertEqual(HeaderCodec.decode(blocks).name, name)

    def testGnuLongName(self):
        name = longName()
        blocks = NameExtension.build(TarEntry.fromBytes(name, b'hello'), FORMAT_GNU)
        self.assertEqual(len(blocks), 3 * BLOCK_SIZE)

        longLink = HeaderCodec.decode(blocks[:BLOCK_SIZE])
        self.assertEqual(longLink.typeflag, GNUTYPE_LONGNAME)
        self.assertEqual(longLink.name, GNU_LONGLINK_NAME)
        self.assertEqual(longLink.size, len(name) + 1)
        self.assertEqual(blocks[BLOCK_SIZE:BLOCK_SIZE + len(name) + 1], name.encode() + b'\0')

        real = HeaderCodec.decode(blocks[2 * BLOCK_SIZE:])
        self.assertEqual(real.name, name[:100])
        self.assertEqual(real.size, 5)

    def testGnuLongLinkname(self):
        entry = TarEntry(name='link', kind=EntryKind.SYMLINK, linkname='t' * 150)
        blocks = NameExtension.build(entry, FORMAT_GNU)
        self.assertEqual(len(blocks), 3 * BLOCK_SIZE)
        self.assertEqual(HeaderCodec.decode(blocks[:BLOCK_SIZE]).typeflag, GNUTYPE_LONGLINK)

    def testGnuLongNameAndLinkname(self):
        entry = TarEntry(name=longName(), kind=EntryKind.HARDLINK, linkname=longName(10))
        blocks = NameExtension.build(entry, FORMAT_GNU)
        self.assertEqual(len(blocks), 5 * BLOCK_SIZE)

    def testPaxLongName(self):
        name = longName()
        blocks = NameExtension.build(TarEntry.fromBytes(name, b'hello'), FORMAT_PAX)
        self.assertEqual(len(blocks), 3 * BLOCK_SIZE)

        extended = HeaderCodec.decode(blocks[:BLOCK_SIZE])
        self.assertEqual(extended.typeflag, XHDTYPE)
        self.assertIn('PaxHeaders.0', extended.name)

        records = decodePaxRecords(blocks[BLOCK_SIZE:BLOCK_SIZE + extended.size])
        self.assertEqual(records, {'path': name})

    def testPaxLargeNumbers(self):
        entry = TarEntry(name='big', kind=EntryKind.DIRECTORY, uid=8 ** 7, gid=5)
        blocks = NameExtension.build(entry, FORMAT_PAX)
        self.assertEqual(len(blocks), 3 * BLOCK_SIZE)

        extended = HeaderCodec.decode(blocks[:BLOCK_SIZE])
        records = decodePaxRecords(blocks[BLOCK_SIZE:BLOCK_SIZE + extended.size])
        self.assertEqual(records, {'uid': str(8 ** 7)})

        real = HeaderCodec.decode(blocks[2 * BLOCK_SIZE:])
        self.assertEqual(real.uid, 0)
        self.assertEqual(real.gid, 5)

    def testGnuLargeNumbersInline(self):
        entry = TarEntry(name='big', kind=EntryKind.DIRECTORY, uid=8 ** 7)
        blocks = NameExtension.build(entry, FORMAT_GNU)
        self.assertEqual(len(blocks), BLOCK_SIZE)
        self.assertEqual(HeaderCodec.decode(blocks).uid, 8 ** 7)

    def testPaxHeadersKeptOnlyInPax(self):
        entry = TarEntry(name='f', paxHeaders={'comment': 'hello'})
        self.assertEqual(len(NameExtension.build(entry, FORMAT_GNU)), BLOCK_SIZE)

        blocks = NameExtension.build(entry, FORMAT_PAX)
        extended = HeaderCodec.decode(blocks[:BLOCK_SIZE])
        self.assertEqual(decodePaxRecords(blocks[BLOCK_SIZE:BLOCK_SIZE + extended.size]), {'comment': 'hello'})


class PendingExtensionsTest(unittest.TestCase):

    def setUp(self):
        self.pending = PendingExtensions()

    def absorbPax(self, records, typeflag=XHDTYPE):
        self.pending.absorb(paxHeader(typeflag), encodePaxRecords(records))

    def testIsExtension(self):
        for typeflag in (GNUTYPE_LONGNAME, GNUTYPE_LONGLINK, XHDTYPE, XGLTYPE):
            self.assertTrue(PendingExtensions.isExtension(typeflag))
        self.assertFalse(PendingExtensions.isExtension(REGTYPE))

    def testGnuName(self):
        self.pending.absorb(gnuHeader(GNUTYPE_LONGNAME, 'gnu/name'), b'gnu/name\0')
        self.pending.absorb(gnuHeader(GNUTYPE_LONGLINK, 'gnu/link'), b'gnu/link\0')
        self.assertTrue(self.pending.hasPending())

        entry = self.pending.apply(TarEntry(name='short', kind=EntryKind.SYMLINK, linkname='x'))
        self.assertEqual(entry.name, 'gnu/name')
        self.assertEqual(entry.linkname, 'gnu/link')
        self.assertFalse(self.pending.hasPending())

    def testPaxWinsOverGnu(self):
        self.pending.absorb(gnuHeader(GNUTYPE_LONGNAME, 'gnu/name'), b'gnu/name\0')
        self.absorbPax({'path': 'pax/name'})

        entry = self.pending.apply(TarEntry(name='short'))
        self.assertEqual(entry.name, 'pax/name')

    def testLaterRecordReplacesEarlier(self):
        self.absorbPax({'path': 'first'})
        self.absorbPax({'path': 'second'})
        self.assertEqual(self.pending.apply(TarEntry(name='x')).name, 'second')

    def testNumericOverrides(self):
        self.absorbPax({'size': '10', 'uid': '4000000', 'gid': '7', 'mtime': '1700000000.75'})
        entry = self.pending.apply(TarEntry(name='x', size=0))

        self.assertEqual(entry.size, 10)
        self.assertEqual(entry.uid, 4000000)
        self.assertEqual(entry.gid, 7)
        self.assertEqual(entry.mtime, 1700000000)

    def testInvalidNumber(self):
        self.absorbPax({'uid': 'abc'})
        with self.assertRaises(MalformedHeaderError):
            self.pending.apply(TarEntry(name='x'))

    def testGlobalRecordsPersist(self):
        self.absorbPax({'uname': 'globaluser', 'comment': 'archived'}, XGLTYPE)
        self.assertFalse(self.pending.hasPending())

        first = self.pending.apply(TarEntry(name='a'))
        second = self.pending.apply(TarEntry(name='b', uname='local'))
        self.assertEqual(first.uname, 'globaluser')
        self.assertEqual(second.uname, 'globaluser')
        self.assertEqual(second.paxHeaders, {'comment': 'archived'})

    def testEmptyValueCancelsGlobal(self):
        self.absorbPax({'comment': 'archived'}, XGLTYPE)
        self.absorbPax({'comment': ''})

        self.assertEqual(self.pending.apply(TarEntry(name='a')).paxHeaders, {})
        self.assertEqual(self.pending.apply(TarEntry(name='b')).paxHeaders, {'comment': 'archived'})

    def testTrailingSlashMakesDirectory(self):
        self.absorbPax({'path': 'some/dir/'})
        entry = self.pending.apply(TarEntry(name='x'))
        self.assertEqual(entry.kind, EntryKind.DIRECTORY)

    def testNonExtensionRejected(self):
        with self.assertRaises(MalformedHeaderError):
            self.pending.absorb(TarEntry(name='x'), b'')


if __name__ == '__main__':
    unittest.main()
