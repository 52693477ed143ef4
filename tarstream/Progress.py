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

import sys
import time

from typing import Iterable, Iterator

from tqdm import tqdm

from tarstream.Kernel import getLogger
from tarstream.Utils import formatSize

logger = getLogger(__name__)


class BitmathTqdm(tqdm):
    """Custom tqdm class with consistent size formatting."""

    def __init__(self, *args, sizeFormatter=None, unit='B', unitScale=False, **kwargs):
        self.sizeFormatter = sizeFormatter or formatSize

        if 'bar_format' not in kwargs:
            kwargs['bar_format'] = (
                '{desc}: {percentage:3.0f}%|{bar}| '
                '{n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
            )

        super().__init__(*args, unit=unit, unit_scale=unitScale, **kwargs)

    def _formatSpeed(self, rateBytesPerSec):
        """Format speed using the same formatter as size."""
        if rateBytesPerSec <= 0:
            return "0/sec"
        return f"{self.sizeFormatter(int(rateBytesPerSec))}/sec"

    @property
    def format_dict(self):
        """Override format_dict to use consistent formatting."""
        d = super().format_dict

        d['rate_fmt'] = self._formatSpeed(d.get('rate', 0) or 0)
        d['n_fmt'] = self.sizeFormatter(d.get('n', 0))

        # Archives read from pipes have no known total
        total = d.get('total')
        d['total_fmt'] = self.sizeFormatter(total) if total is not None else '?'

        return d

    def __bool__(self):
        """Avoid tqdm's TypeError on bool() when total is None"""
        return hasattr(self, 'n')


class Progress:
    """
    Byte progress of an archive stream, shown as a tqdm bar on stderr.

    A totalSize of 0 means unknown (reading from a pipe): the bar then shows
    bytes and speed without a percentage.
    """

    def __init__(self, totalSize=0, description='Archive', useBar=True, stream=None):
        self.totalSize = totalSize
        self.description = description
        self.useBar = useBar

        self.transferred = 0
        self.startTime = time.monotonic()

        self.pbar = None
        if self.useBar:
            self._initProgressBar(stream or sys.stderr)

    def _initProgressBar(self, stream):
        if self.totalSize:
            barFormat = (
                '{desc}: {percentage:3.0f}%|{bar}| '
                '{n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
            )
        else:
            barFormat = '{desc}: {n_fmt} [{elapsed}, {rate_fmt}]'

        self.pbar = BitmathTqdm(
            total=self.totalSize or None, desc=self.description, leave=True, ncols=100, file=stream,
            bar_format=barFormat,
        )

    def advance(self, increment: int):
        self.transferred += increment
        if self.pbar and increment > 0:
            self.pbar.update(increment)

    def track(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        """Pass chunks through while counting them."""
        for chunk in chunks:
            self.advance(len(chunk))
            yield chunk

    def write(self, text: str, stream=None):
        """Write text without interfering with the progress bar."""
        stream = stream or sys.stdout
        if self.pbar:
            self.pbar.write(text, file=stream)
        else:
            print(text, file=stream, flush=True)

    def getElapsedTime(self):
        return time.monotonic() - self.startTime

    def summary(self) -> str:
        elapsed = self.getElapsedTime()
        speed = int(self.transferred / elapsed) if elapsed > 0 else 0
        return f"{formatSize(self.transferred)} in {elapsed:.1f}s ({formatSize(speed)}/sec)"

    def finishBar(self):
        if self.pbar:
            try:
                self.pbar.refresh()
                self.pbar.close()
            except (ValueError, AttributeError) as e:
                logger.debug(f"Exception during progress bar cleanup: {e}")
            finally:
                self.pbar = None

    def __enter__(self):
        return self

    def __exit__(self, excType, excVal, excTb):
        self.finishBar()


class TrackedReader:
    """File object proxy that reports every read to a Progress."""

    def __init__(self, fileobj, progress: Progress):
        self.fileobj = fileobj
        self.progress = progress
        self.name = getattr(fileobj, 'name', None)

    def read(self, size: int = -1) -> bytes:
        data = self.fileobj.read(size)
        self.progress.advance(len(data))
        return data
