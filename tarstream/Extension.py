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
Long names, long link targets and large numbers.

Two mechanisms precede the real header with auxiliary members:

- GNU: a '././@LongLink' member of type 'L' (name) or 'K' (link target) whose
  payload is the NUL terminated string.
- PAX: a member of type 'x' whose payload is a list of "%d %s=%s\\n" records,
  the length counting the whole record including its own digits. Type 'g'
  records apply to every following member.

On decode both mechanisms feed a single PendingExtensions slot that the next
real header consumes. PAX values win over GNU values, which win over the header
fields.
"""

import posixpath

from tarstream.Entry import (
    TarEntry, EntryKind, REGTYPE, AREGTYPE, DIRTYPE, GNUTYPE_LONGNAME, GNUTYPE_LONGLINK, XHDTYPE, XGLTYPE
)
from tarstream.Errors import MalformedHeaderError
from tarstream.Header import (
    HeaderCodec, splitPath, maxOctal, LINKNAME_LENGTH, NAME_LENGTH, SIZE_FIELD, UID_FIELD, GID_FIELD, MTIME_FIELD,
    UNAME_FIELD, GNAME_FIELD
)
from tarstream.Kernel import getLogger
from tarstream.Settings import BLOCK_SIZE, FORMAT_GNU, FORMAT_PAX
from tarstream.Utils import encodeName, decodeName

logger = getLogger(__name__)

GNU_LONGLINK_NAME = '././@LongLink'
PAX_HEADER_DIR = 'PaxHeaders.0'

# Extension payloads are buffered whole; anything bigger is not a name list
MAX_EXTENSION_SIZE = 1024 * 1024

PAX_INTEGER_KEYS = ('size', 'uid', 'gid')


def padBlock(data: bytes) -> bytes:
    """Zero pad data to the next 512-byte boundary."""
    remainder = len(data) % BLOCK_SIZE
    if remainder:
        data += bytes(BLOCK_SIZE - remainder)
    return data


def encodePaxRecords(records: dict) -> bytes:
    """
    Encode PAX records as "%d %s=%s\\n" lines.

    Args:
        records: key -> value (str or int); keys and values are UTF-8 encoded

    Returns:
        bytes: The extended header payload (unpadded)
    """
    lines = []
    for key, value in records.items():
        keyBytes = encodeName(key)
        valueBytes = encodeName(str(value))

        # Fixed point: the length prefix counts its own digits
        body = len(keyBytes) + len(valueBytes) + 3
        length = previous = 0
        while True:
            length = body + len(str(previous))
            if length == previous:
                break
            previous = length

        lines.append(b'%d %s=%s\n' % (length, keyBytes, valueBytes))

    return b''.join(lines)


def decodePaxRecords(payload: bytes) -> dict:
    """
    Decode an extended header payload.

    Raises:
        MalformedHeaderError: If a record length, separator or terminator is wrong
    """
    records = {}
    position = 0
    end = len(payload)

    while position < end:
        # Some writers pad the payload with NULs
        if payload[position] == 0:
            break

        space = payload.find(b' ', position)
        if space < 0:
            raise MalformedHeaderError(f"PAX record without length at offset {position}")

        try:
            length = int(payload[position:space])
        except ValueError:
            raise MalformedHeaderError(f"Invalid PAX record length {payload[position:space]!r}")

        if length <= space - position + 1 or position + length > end:
            raise MalformedHeaderError(f"PAX record length {length} out of range at offset {position}")

        record = payload[space + 1:position + length]
        if not record.endswith(b'\n'):
            raise MalformedHeaderError(f"PAX record at offset {position} is not newline terminated")

        key, separator, value = record[:-1].partition(b'=')
        if not separator or not key:
            raise MalformedHeaderError(f"PAX record at offset {position} has no keyword")

        records[decodeName(key)] = decodeName(value)
        position += length

    return records


def _parsePaxInteger(key: str, value: str) -> int:
    try:
        if key == 'mtime':
            # Fractional seconds are truncated
            return int(float(value))
        return int(value)
    except ValueError:
        raise MalformedHeaderError(f"Invalid PAX {key} value {value!r}")


def _truncate(data: bytes, length: int) -> bytes:
    return data[:length]


class NameExtension:
    """Builds the full header sequence (extension members + real header) for an entry."""

    @classmethod
    def build(cls, entry: TarEntry, format: str = FORMAT_GNU) -> bytes:
        """
        Encode the header blocks of an entry, choosing the minimal encoding.

        Names that fit the name field or the prefix/name split and link targets
        up to 100 bytes produce a single header block.

        Returns:
            bytes: Extension members (padded) followed by the real header block
        """
        if format == FORMAT_PAX:
            return cls._buildPax(entry)
        return cls._buildGnu(entry)

    @classmethod
    def _buildGnu(cls, entry: TarEntry) -> bytes:
        blocks = []
        path = None
        linkname = None

        nameBytes = encodeName(entry.name)
        if splitPath(nameBytes) is None:
            blocks.append(cls._gnuLongLink(entry, GNUTYPE_LONGNAME, nameBytes))
            path = _truncate(nameBytes, NAME_LENGTH)

        linkBytes = encodeName(entry.linkname)
        if len(linkBytes) > LINKNAME_LENGTH:
            blocks.append(cls._gnuLongLink(entry, GNUTYPE_LONGLINK, linkBytes))
            linkname = _truncate(linkBytes, LINKNAME_LENGTH)

        if entry.paxHeaders:
            logger.debug(f"Dropping {len(entry.paxHeaders)} PAX records of {entry.name!r} in gnu format")

        blocks.append(HeaderCodec.encode(entry, FORMAT_GNU, path=path, linkname=linkname))
        return b''.join(blocks)

    @classmethod
    def _gnuLongLink(cls, entry: TarEntry, typeflag: bytes, value: bytes) -> bytes:
        payload = value + b'\0'
        logger.debug(f"GNU {typeflag.decode()} extension ({len(payload)} bytes) for {entry.name!r}")

        longLink = TarEntry(
            name=GNU_LONGLINK_NAME, kind=EntryKind.OTHER, typeflag=typeflag, size=len(payload), mode=0o644,
        )
        return HeaderCodec.encode(longLink, FORMAT_GNU) + padBlock(payload)

    @classmethod
    def _buildPax(cls, entry: TarEntry) -> bytes:
        records = {}
        fields = {}
        path = None
        linkname = None

        nameBytes = encodeName(entry.name)
        if splitPath(nameBytes) is None:
            records['path'] = entry.name
            path = _truncate(nameBytes, NAME_LENGTH)

        linkBytes = encodeName(entry.linkname)
        if len(linkBytes) > LINKNAME_LENGTH:
            records['linkpath'] = entry.linkname
            linkname = _truncate(linkBytes, LINKNAME_LENGTH)

        size = entry.size if entry.hasPayload() else 0
        for key, value, fieldSpec in (('size', size, SIZE_FIELD), ('uid', entry.uid, UID_FIELD),
                                      ('gid', entry.gid, GID_FIELD), ('mtime', entry.mtime, MTIME_FIELD)):
            if value > maxOctal(fieldSpec[1]):
                records[key] = value
                fields[key] = 0

        for key, value, fieldSpec in (('uname', entry.uname, UNAME_FIELD), ('gname', entry.gname, GNAME_FIELD)):
            if value and len(encodeName(value)) > fieldSpec[1]:
                records[key] = value
                fields[key] = ''

        for key, value in entry.paxHeaders.items():
            records.setdefault(key, value)

        header = HeaderCodec.encode(entry, FORMAT_PAX, path=path, linkname=linkname, fields=fields)
        if not records:
            return header

        logger.debug(f"PAX extension {sorted(records)} for {entry.name!r}")
        payload = encodePaxRecords(records)
        paxHeader = TarEntry(
            name=cls._paxHeaderName(entry.name), kind=EntryKind.OTHER, typeflag=XHDTYPE, size=len(payload),
            mode=0o644, mtime=min(entry.mtime, maxOctal(MTIME_FIELD[1])),
        )
        return HeaderCodec.encode(paxHeader, FORMAT_PAX) + padBlock(payload) + header

    @classmethod
    def _paxHeaderName(cls, name: str) -> bytes:
        """'<dir>/PaxHeaders.0/<base>' cut down to what fits the header."""
        directory, base = posixpath.split(name.rstrip('/'))
        paxName = encodeName(posixpath.join(directory, PAX_HEADER_DIR, base))
        if splitPath(paxName) is None:
            paxName = _truncate(encodeName(posixpath.join(PAX_HEADER_DIR, base)), NAME_LENGTH)
        return paxName


class GnuLongNameStrategy:
    """Absorbs 'L' and 'K' members."""

    typeflags = (GNUTYPE_LONGNAME, GNUTYPE_LONGLINK)

    def absorb(self, header: TarEntry, payload: bytes, pending: 'PendingExtensions'):
        value = decodeName(payload.split(b'\0', 1)[0])
        if header.typeflag == GNUTYPE_LONGNAME:
            pending.gnuName = value
        else:
            pending.gnuLinkname = value


class PaxHeaderStrategy:
    """Absorbs 'x' (next member) and 'g' (all following members) records."""

    typeflags = (XHDTYPE, XGLTYPE)

    def absorb(self, header: TarEntry, payload: bytes, pending: 'PendingExtensions'):
        records = decodePaxRecords(payload)
        if header.typeflag == XGLTYPE:
            pending.globalRecords.update(records)
        else:
            pending.records.update(records)


class PendingExtensions:
    """
    Extension values waiting for the next real header.

    Attributes:
        gnuName, gnuLinkname: Values of the last 'L' / 'K' members
        records: PAX records of 'x' members
        globalRecords: PAX records of 'g' members, kept for the rest of the archive
    """

    strategies = (GnuLongNameStrategy(), PaxHeaderStrategy())

    def __init__(self):
        self.gnuName = None
        self.gnuLinkname = None
        self.records = {}
        self.globalRecords = {}

    @classmethod
    def isExtension(cls, typeflag: bytes) -> bool:
        return any(typeflag in strategy.typeflags for strategy in cls.strategies)

    def hasPending(self) -> bool:
        """Whether member-scoped values are waiting (global records never dangle)."""
        return self.gnuName is not None or self.gnuLinkname is not None or bool(self.records)

    def absorb(self, header: TarEntry, payload: bytes):
        """
        Feed one extension member.

        Raises:
            MalformedHeaderError: If the member is not an extension or its payload is malformed
        """
        for strategy in self.strategies:
            if header.typeflag in strategy.typeflags:
                strategy.absorb(header, payload, self)
                return

        raise MalformedHeaderError(f"Not an extension member: typeflag {header.typeflag!r}", header.name)

    def apply(self, entry: TarEntry) -> TarEntry:
        """
        Merge pending values into the entry and clear the member-scoped slot.

        Raises:
            MalformedHeaderError: If a numeric PAX value is invalid
        """
        if self.gnuName is not None:
            entry.name = self.gnuName
        if self.gnuLinkname is not None:
            entry.linkname = self.gnuLinkname

        merged = dict(self.globalRecords)
        merged.update(self.records)

        for key, value in merged.items():
            # An empty value cancels a global record
            if value == '':
                continue

            if key == 'path':
                entry.name = value
            elif key == 'linkpath':
                entry.linkname = value
            elif key in PAX_INTEGER_KEYS or key == 'mtime':
                number = _parsePaxInteger(key, value)
                if number < 0:
                    if key != 'mtime':
                        raise MalformedHeaderError(f"Negative PAX {key} value {value!r}", entry.name)
                    number = 0
                setattr(entry, key, number)
            elif key == 'uname':
                entry.uname = value
            elif key == 'gname':
                entry.gname = value
            else:
                entry.paxHeaders[key] = value

        if entry.typeflag in (REGTYPE, AREGTYPE) and entry.name.endswith('/'):
            entry.kind = EntryKind.DIRECTORY
            entry.typeflag = DIRTYPE

        self.gnuName = None
        self.gnuLinkname = None
        self.records = {}

        return entry
