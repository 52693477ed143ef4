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

from dataclasses import dataclass
from typing import Callable, Optional

from tarstream.Utils import getEnv

BLOCK_SIZE = 512

FORMAT_GNU = 'gnu'
FORMAT_PAX = 'pax'
FORMATS = (FORMAT_GNU, FORMAT_PAX)

# Streaming chunk size (64 KiB), always a whole number of blocks
CHUNK_SIZE = getEnv('TAR_CHUNK_SIZE', 64 * 1024)
CHUNK_SIZE = max(BLOCK_SIZE, -(-CHUNK_SIZE // BLOCK_SIZE) * BLOCK_SIZE)

DEFAULT_FORMAT = getEnv('TAR_FORMAT', FORMAT_GNU).lower()
if DEFAULT_FORMAT not in FORMATS:
    DEFAULT_FORMAT = FORMAT_GNU

# Blocks per record; archives are padded to a whole record like tar does (20 * 512 = 10240)
BLOCKING_FACTOR = max(1, getEnv('TAR_BLOCKING_FACTOR', 20))


def isSuperUser():
    geteuid = getattr(os, 'geteuid', None)
    return bool(geteuid) and geteuid() == 0


@dataclass
class ArchiveOptions:
    """
    Options accepted by the create, list and extract entry points.

    Attributes:
        preservePermissions: Restore all 12 mode bits instead of applying the umask
        absoluteNames: Keep leading '/' on create, allow absolute targets on extract
        dereferenceSymlinks: Archive what symlinks point to instead of the links
        verboseCallback: Called with each TarEntry once it has been processed
        format: Extension mechanism for long names and large numbers (gnu or pax)
        collectErrors: Walker keeps going on unreadable paths and reports them at the end
        sameOwner: Restore numeric uid/gid on extraction (None = only when running as root)
        blockingFactor: Pad the finished archive to a multiple of this many blocks
        chunkSize: Payload streaming chunk size in bytes
    """
    preservePermissions: bool = False
    absoluteNames: bool = False
    dereferenceSymlinks: bool = False
    verboseCallback: Optional[Callable] = None
    format: str = DEFAULT_FORMAT
    collectErrors: bool = False
    sameOwner: Optional[bool] = None
    blockingFactor: int = BLOCKING_FACTOR
    chunkSize: int = CHUNK_SIZE

    def __post_init__(self):
        if self.format not in FORMATS:
            raise ValueError(f"Invalid archive format: {self.format}")

        if self.blockingFactor < 1:
            raise ValueError(f"Blocking factor must be positive: {self.blockingFactor}")

        if self.chunkSize <= 0 or self.chunkSize % BLOCK_SIZE:
            raise ValueError(f"Chunk size must be a positive multiple of {BLOCK_SIZE}: {self.chunkSize}")

        if self.sameOwner is None:
            self.sameOwner = isSuperUser()

    def notify(self, entry):
        if self.verboseCallback:
            self.verboseCallback(entry)
