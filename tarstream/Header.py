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
Encoding and decoding of single 512-byte ustar header blocks.

Block layout (offset, width):

    name       0  100    linkname  157  100
    mode     100    8    magic     257    6  "ustar\\0" (POSIX) / "ustar " (old GNU)
    uid      108    8    version   263    2  "00"      (POSIX) / " \\0"   (old GNU)
    gid      116    8    uname     265   32
    size     124   12    gname     297   32
    mtime    136   12    devmajor  329    8
    chksum   148    8    devminor  337    8
    typeflag 156    1    prefix    345  155

Numeric fields are zero padded octal terminated by NUL. Values too large for
the field use the GNU base-256 form: the high bit of the first byte is set and
the remaining bytes hold the big-endian value.

Headers are always written with the POSIX magic. The old GNU magic is accepted
on read, where its prefix field is ignored.
"""

import struct

from tarstream.Entry import TarEntry, EntryKind, REGTYPE, AREGTYPE, DIRTYPE
from tarstream.Errors import ChecksumError, FormatError, MalformedHeaderError
from tarstream.Kernel import getLogger
from tarstream.Settings import BLOCK_SIZE, FORMAT_GNU
from tarstream.Utils import encodeName, decodeName

logger = getLogger(__name__)

NAME_FIELD = (0, 100)
MODE_FIELD = (100, 8)
UID_FIELD = (108, 8)
GID_FIELD = (116, 8)
SIZE_FIELD = (124, 12)
MTIME_FIELD = (136, 12)
CHKSUM_FIELD = (148, 8)
TYPEFLAG_OFFSET = 156
LINKNAME_FIELD = (157, 100)
MAGIC_FIELD = (257, 6)
VERSION_FIELD = (263, 2)
UNAME_FIELD = (265, 32)
GNAME_FIELD = (297, 32)
DEVMAJOR_FIELD = (329, 8)
DEVMINOR_FIELD = (337, 8)
PREFIX_FIELD = (345, 155)

NAME_LENGTH = NAME_FIELD[1]
PREFIX_LENGTH = PREFIX_FIELD[1]
LINKNAME_LENGTH = LINKNAME_FIELD[1]

POSIX_MAGIC = b'ustar\0'
POSIX_VERSION = b'00'
GNU_MAGIC = b'ustar '

ZERO_BLOCK = bytes(BLOCK_SIZE)

# Signed byte view of a header for checksums written by historic tars
_SIGNED_HEADER = struct.Struct('148b8x356b')


def isZeroBlock(block: bytes) -> bool:
    return block == ZERO_BLOCK


def computeChecksum(block: bytes) -> tuple:
    """
    Compute the header checksum with the chksum field counted as eight spaces.

    Returns:
        tuple: (unsigned, signed) sums; writers use the unsigned one, some old
               implementations summed signed chars.
    """
    unsigned = sum(block[:148]) + 8 * 0x20 + sum(block[156:BLOCK_SIZE])
    signed = sum(_SIGNED_HEADER.unpack_from(block)) + 8 * 0x20
    return unsigned, signed


def maxOctal(width: int) -> int:
    """Largest value an octal field of this width can hold (one byte is the NUL)."""
    return 8 ** (width - 1) - 1


def formatNumber(value: int, width: int, allowBase256: bool = True) -> bytes:
    """
    Encode a numeric field.

    Args:
        value: Non-negative integer (negative values need base-256)
        width: Field width in bytes
        allowBase256: Fall back to GNU base-256 when octal does not fit

    Raises:
        FormatError: If the value fits in neither representation
    """
    if 0 <= value <= maxOctal(width):
        return b'%0*o\0' % (width - 1, value)

    if allowBase256 and -(256 ** (width - 1)) <= value < 256 ** (width - 1):
        if value >= 0:
            return b'\x80' + value.to_bytes(width - 1, 'big')
        # Two's complement over the whole field, the first byte is 0xff
        return value.to_bytes(width, 'big', signed=True)

    raise FormatError(f"Value {value} does not fit in a {width}-byte numeric field")


def parseNumber(field: bytes) -> int:
    """
    Decode a numeric field written as octal (NUL or space padded) or base-256.

    Raises:
        MalformedHeaderError: If the field holds neither form
    """
    if field and field[0] & 0x80:
        value = int.from_bytes(field[1:], 'big')
        if field[0] == 0xff:
            value -= 256 ** (len(field) - 1)
        return value

    text = field.split(b'\0', 1)[0].strip()
    if not text:
        return 0

    try:
        return int(text, 8)
    except ValueError:
        raise MalformedHeaderError(f"Invalid numeric header field {field!r}")


def _putString(block: bytearray, fieldSpec: tuple, value: bytes):
    offset, width = fieldSpec
    if len(value) > width:
        raise FormatError(f"{value!r} is too long for a {width}-byte header field")
    block[offset:offset + len(value)] = value


def _getString(block: bytes, fieldSpec: tuple) -> bytes:
    offset, width = fieldSpec
    return block[offset:offset + width].split(b'\0', 1)[0]


def _getField(block: bytes, fieldSpec: tuple) -> bytes:
    offset, width = fieldSpec
    return block[offset:offset + width]


def splitPath(path: bytes):
    """
    Fit an encoded path into the ustar (prefix, name) pair.

    Returns:
        tuple: (prefix, name) where prefix may be empty, or None when the path
               cannot be stored without a name extension.
    """
    if len(path) <= NAME_LENGTH:
        return b'', path

    # The name part must be non-empty, so a trailing slash is never a split point
    for index in range(len(path) - 1):
        if path[index:index + 1] != b'/':
            continue

        name = path[index + 1:]
        if len(name) > NAME_LENGTH:
            continue

        prefix = path[:index]
        if not prefix:
            continue
        if len(prefix) <= PREFIX_LENGTH:
            return prefix, name
        # Any slash further right gives a longer prefix
        return None

    return None


class HeaderCodec:
    """Stateless encoder/decoder of one header block."""

    @classmethod
    def encode(cls, entry: TarEntry, format: str = FORMAT_GNU, path: str = None, linkname: str = None,
               fields: dict = None) -> bytes:
        """
        Encode a header block for the entry.

        Args:
            entry: Member to encode
            format: FORMAT_GNU allows base-256 numbers; FORMAT_PAX expects
                    oversized values to have been moved into PAX records
            path: Name to store instead of entry.name (extension placeholders)
            linkname: Link target to store instead of entry.linkname
            fields: Numeric or symbolic overrides (size, uid, gid, mtime, uname, gname)

        Returns:
            bytes: The 512-byte block with its checksum

        Raises:
            FormatError: If a name or a number does not fit after extensions were applied
        """
        values = {
            'size': entry.size if entry.hasPayload() else 0,
            'uid': entry.uid,
            'gid': entry.gid,
            'mtime': entry.mtime,
            'uname': entry.uname or '',
            'gname': entry.gname or '',
        }
        values.update(fields or {})

        pathBytes = encodeName(entry.name if path is None else path)
        split = splitPath(pathBytes)
        if split is None:
            raise FormatError("Member name does not fit in the ustar name fields", entry.name)
        prefix, name = split

        linkBytes = encodeName(entry.linkname if linkname is None else linkname)
        if len(linkBytes) > LINKNAME_LENGTH:
            raise FormatError("Link target does not fit in the ustar linkname field", entry.name)

        allowBase256 = format == FORMAT_GNU
        block = bytearray(BLOCK_SIZE)

        _putString(block, NAME_FIELD, name)
        block[MODE_FIELD[0]:MODE_FIELD[0] + MODE_FIELD[1]] = formatNumber(entry.mode, MODE_FIELD[1], False)
        for fieldName, fieldSpec in (('uid', UID_FIELD), ('gid', GID_FIELD), ('size', SIZE_FIELD),
                                     ('mtime', MTIME_FIELD)):
            offset, width = fieldSpec
            try:
                block[offset:offset + width] = formatNumber(values[fieldName], width, allowBase256)
            except FormatError as e:
                raise FormatError(f"{fieldName}: {e.message}", entry.name) from e

        block[TYPEFLAG_OFFSET:TYPEFLAG_OFFSET + 1] = entry.typeflag
        _putString(block, LINKNAME_FIELD, linkBytes)

        _putString(block, MAGIC_FIELD, POSIX_MAGIC)
        _putString(block, VERSION_FIELD, POSIX_VERSION)

        # Symbolic names are informational; longer ones are cut to the field
        for fieldName, fieldSpec in (('uname', UNAME_FIELD), ('gname', GNAME_FIELD)):
            value = encodeName(values[fieldName])
            if len(value) > fieldSpec[1]:
                logger.debug(f"Truncating {fieldName} {values[fieldName]!r} of {entry.name!r} to {fieldSpec[1]} bytes")
            _putString(block, fieldSpec, value[:fieldSpec[1]])

        if entry.isOther():
            block[DEVMAJOR_FIELD[0]:DEVMAJOR_FIELD[0] + 8] = formatNumber(entry.devmajor, 8, allowBase256)
            block[DEVMINOR_FIELD[0]:DEVMINOR_FIELD[0] + 8] = formatNumber(entry.devminor, 8, allowBase256)

        if prefix:
            _putString(block, PREFIX_FIELD, prefix)

        unsigned, _ = computeChecksum(block)
        block[CHKSUM_FIELD[0]:CHKSUM_FIELD[0] + CHKSUM_FIELD[1]] = b'%06o\0 ' % unsigned

        return bytes(block)

    @classmethod
    def decode(cls, block: bytes) -> TarEntry:
        """
        Decode and validate one header block.

        Raises:
            ChecksumError: If the stored checksum does not match the block
            MalformedHeaderError: If a field cannot be parsed
        """
        if len(block) != BLOCK_SIZE:
            raise MalformedHeaderError(f"Header block must be {BLOCK_SIZE} bytes, got {len(block)}")

        if isZeroBlock(block):
            raise MalformedHeaderError("Unexpected zero block where a header was expected")

        stored = parseNumber(_getField(block, CHKSUM_FIELD))
        if stored not in computeChecksum(block):
            raise ChecksumError("Checksum mismatch in header block")

        magic = _getField(block, MAGIC_FIELD)
        isPosix = magic == POSIX_MAGIC
        isUstar = isPosix or magic == GNU_MAGIC

        name = _getString(block, NAME_FIELD)
        if isPosix:
            prefix = _getString(block, PREFIX_FIELD)
            if prefix:
                name = prefix + b'/' + name

        typeflag = block[TYPEFLAG_OFFSET:TYPEFLAG_OFFSET + 1]
        kind = EntryKind.fromTypeflag(typeflag)

        # v7 archives mark directories by a trailing slash only
        if typeflag in (REGTYPE, AREGTYPE) and name.endswith(b'/'):
            kind = EntryKind.DIRECTORY
            typeflag = DIRTYPE

        size = parseNumber(_getField(block, SIZE_FIELD))
        if size < 0:
            raise MalformedHeaderError(f"Negative member size {size}")

        mtime = parseNumber(_getField(block, MTIME_FIELD))
        if mtime < 0:
            logger.debug(f"Clamping negative mtime {mtime} of {name!r} to 0")
            mtime = 0

        entry = TarEntry(
            name=decodeName(name),
            kind=kind,
            typeflag=typeflag,
            size=size,
            mode=parseNumber(_getField(block, MODE_FIELD)),
            uid=parseNumber(_getField(block, UID_FIELD)),
            gid=parseNumber(_getField(block, GID_FIELD)),
            mtime=mtime,
            linkname=decodeName(_getString(block, LINKNAME_FIELD)),
        )

        if isUstar:
            entry.uname = decodeName(_getString(block, UNAME_FIELD))
            entry.gname = decodeName(_getString(block, GNAME_FIELD))
            entry.devmajor = parseNumber(_getField(block, DEVMAJOR_FIELD))
            entry.devminor = parseNumber(_getField(block, DEVMINOR_FIELD))

        return entry
