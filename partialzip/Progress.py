#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# partialzip - Download single files from online zip archives
# Copyright (C) 2025-2026 partialzip contributors
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

import time

from tqdm import tqdm

from partialzip.Kernel import getLogger
from partialzip.Utils import formatSize, ONE_MB

logger = getLogger(__name__)


class BitmathTqdm(tqdm):
    """tqdm bar that formats sizes and rates with formatSize."""

    def __init__(self, *args, sizeFormatter=None, **kwargs):
        self.sizeFormatter = sizeFormatter or formatSize
        kwargs.setdefault(
            'bar_format', '{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
        )
        super().__init__(*args, unit='B', unit_scale=False, **kwargs)

    @property
    def format_dict(self):
        d = super().format_dict

        rate = d.get('rate', 0) or 0
        d['rate_fmt'] = f"{self.sizeFormatter(int(rate))}/sec" if rate > 0 else "0/sec"
        d['n_fmt'] = self.sizeFormatter(d.get('n', 0))

        total = d.get('total')
        d['total_fmt'] = self.sizeFormatter(total) if total is not None else '?'
        return d


class Progress:
    """
    Progress of one entry being written, in decompressed bytes.

    With useBar a tqdm bar is drawn on stderr; otherwise a line goes to
    loggerCallback every logInterval seconds (and at every 5 MB boundary).
    """

    def __init__(self, totalSize, description='Downloading', loggerCallback=None, logInterval=2.0, useBar=False):
        self.totalSize = totalSize
        self.loggerCallback = loggerCallback or logger.info
        self.logInterval = logInterval
        self.useBar = useBar

        self.transferred = 0
        self.startTime = time.monotonic()
        self.lastProgressTime = self.startTime
        self.lastProgressBytes = 0

        self.pbar = None
        if self.useBar:
            self.pbar = BitmathTqdm(total=totalSize or None, desc=description, leave=True, ncols=100)

    def advance(self, size):
        self.update(self.transferred + size)

    def update(self, bytesTransferred, forceLog=False):
        previousTransferred = self.transferred
        self.transferred = bytesTransferred
        currentTime = time.monotonic()

        if self.pbar is not None:
            increment = self.transferred - previousTransferred
            if increment > 0:
                self.pbar.update(increment)
        elif self._shouldLog(forceLog, previousTransferred, currentTime):
            self._logProgress(currentTime)

    def _shouldLog(self, forceLog, previousTransferred, currentTime):
        return (
            forceLog or previousTransferred // (5 * ONE_MB) != self.transferred // (5 * ONE_MB) or
            (currentTime - self.lastProgressTime) >= self.logInterval
        )

    def _logProgress(self, currentTime):
        timeDelta = currentTime - self.lastProgressTime
        bytesDelta = self.transferred - self.lastProgressBytes
        speed = bytesDelta / timeDelta if timeDelta > 0 else 0

        percentage = (self.transferred * 100.0 / self.totalSize) if self.totalSize > 0 else 100.0
        self.loggerCallback(
            f"Progress: {formatSize(self.transferred)}/{formatSize(self.totalSize)} ({percentage:.2f}%), "
            f"{formatSize(int(speed))}/sec"
        )

        self.lastProgressTime = currentTime
        self.lastProgressBytes = self.transferred

    def getPercentage(self):
        return (self.transferred * 100.0 / self.totalSize) if self.totalSize > 0 else 0

    def finishBar(self, complete=True):
        """Close the bar. complete=False leaves it at the current position (failed transfer)."""
        if self.pbar is None:
            return
        try:
            if complete and self.pbar.total:
                remaining = self.pbar.total - self.pbar.n
                if remaining > 0:
                    self.pbar.update(remaining)
            self.pbar.refresh()
            self.pbar.close()
        except (ValueError, AttributeError) as e:
            logger.debug(f"Exception during progress bar cleanup: {e}")
        finally:
            self.pbar = None

    def __enter__(self):
        return self

    def __exit__(self, excType, excVal, excTb):
        self.finishBar(complete=excType is None)
