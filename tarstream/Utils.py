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

import locale
import os
import sys

import bitmath
import chardet

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

# Name encoding used on the wire; surrogateescape keeps arbitrary bytes lossless.
NAME_ENCODING = 'utf-8'
NAME_ERRORS = 'surrogateescape'


def encodeName(name):
    """Encode a member name or link target into its wire bytes."""
    if isinstance(name, bytes):
        return name
    return name.encode(NAME_ENCODING, NAME_ERRORS)


def decodeName(data):
    """Decode wire bytes into a str that re-encodes to the very same bytes."""
    return data.decode(NAME_ENCODING, NAME_ERRORS)


_UNICODE_TRY_ENCODINGS = tuple(e for e in (locale.getlocale()[1], 'cp1252') if e)


def _unicode(s, encodings=None, throw=True, confidence=0.8):
    """
    Force to UNICODE string.

    @param s String or bytes.
    @param encodings Native encodings for decode. It will be tried to decode
                     string, try and error.
    @param throw Raise exception if it fails to convert string.
    @param confidence Minimum chardet confidence to try its guess first.
    @return UNICODE type string.
    """
    if isinstance(s, str):
        return s

    if not isinstance(s, bytes):
        return str(s)

    encodings = list(encodings or [])

    try:
        result = chardet.detect(s)

        if result['confidence'] > confidence:
            if result['encoding']:
                encodings.append(result['encoding'])
            encodings.extend(_UNICODE_TRY_ENCODINGS)
        else:
            encodings.extend(_UNICODE_TRY_ENCODINGS)
            if result['encoding']:
                encodings.append(result['encoding'])

    except Exception:
        encodings.extend(_UNICODE_TRY_ENCODINGS)

    error = None
    for encoding in encodings:
        try:
            return s.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            error = e

    if throw and error:
        raise error

    return None


def displayName(name):
    """
    Printable form of a member name.

    Names that are valid UTF-8 are shown as is; legacy 8-bit names (carried as
    surrogate escapes) are guessed with chardet, falling back to replacement
    characters.
    """
    raw = encodeName(name)
    try:
        return raw.decode(NAME_ENCODING)
    except UnicodeDecodeError:
        pass

    guessed = _unicode(raw, throw=False)
    if guessed is not None:
        return guessed
    return raw.decode(NAME_ENCODING, 'replace')


def flushPrint(text, stream=None):
    stream = stream or sys.stdout
    try:
        print(text, file=stream, flush=True)
    except UnicodeEncodeError:
        # Replace unsupported characters with '?' instead of crashing
        encoding = stream.encoding or 'utf-8'
        print(text.encode(encoding, errors='replace').decode(encoding), file=stream, flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    best = bitmath.Byte(size).best_prefix(system=bitmath.SI)

    # Prefixed units subclass Byte; bitmath 2.x spells the bare unit 'B', 1.x 'Byte'
    if type(best) is bitmath.Byte:
        return "%.*f %s" % (decimal, best.value, 'Bytes' if plural else 'Byte')

    sizeStr = best.format("{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit'))
    return sizeStr.replace('B', '').upper()


def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default
