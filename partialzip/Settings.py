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

import os
import platform as platformModule

from partialzip.Kernel import PUBLIC_VERSION, Singleton, getLogger

# Initial tail window when looking for the End Of Central Directory record (64 KiB).
# A record with a maximal comment is 65535 + 22 bytes, so the worst case needs one growth step.
TAIL_WINDOW_SIZE = int(os.getenv('TAIL_WINDOW_SIZE', 64 * 1024))

# Range fetch size used when streaming an entry's compressed payload (256 KiB)
TRANSFER_CHUNK_SIZE = int(os.getenv('TRANSFER_CHUNK_SIZE', 256 * 1024))

# Seconds, passed to requests as (connect, read) timeout
REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', 30))

# Check with "Range: bytes=0-0" before touching the archive
REQUIRE_RANGE = os.getenv('REQUIRE_RANGE', 'True') == 'True'

USER_AGENT = os.getenv('PARTIALZIP_USER_AGENT', f'partialzip/{PUBLIC_VERSION}')

SUPPORT_URL = 'https://github.com/marcograss/partialzip/issues'

logger = getLogger(__name__)


class SettingsGetter(Singleton):
    """
    Process-wide settings. Module constants above are the defaults, the CLI (or a
    library caller) may override them once per run.
    """

    def initialize(
        self,
        platform=None,
        timeout=None,
        requireRange=None,
        tailWindowSize=None,
        chunkSize=None,
    ):
        self._platform = platform or platformModule.system()
        self._timeout = REQUEST_TIMEOUT if timeout is None else timeout
        self._requireRange = REQUIRE_RANGE if requireRange is None else requireRange
        self._tailWindowSize = TAIL_WINDOW_SIZE if tailWindowSize is None else tailWindowSize
        self._chunkSize = TRANSFER_CHUNK_SIZE if chunkSize is None else chunkSize

        if self._tailWindowSize <= 0 or self._chunkSize <= 0:
            raise ValueError(f"Window sizes must be positive: {self._tailWindowSize=} {self._chunkSize=}")

        logger.debug(
            f"Settings: platform={self._platform} timeout={self._timeout} requireRange={self._requireRange} "
            f"tailWindow={self._tailWindowSize} chunk={self._chunkSize}"
        )

    @property
    def timeout(self):
        return self._timeout

    @property
    def requireRange(self):
        return self._requireRange

    @property
    def tailWindowSize(self):
        return self._tailWindowSize

    @property
    def chunkSize(self):
        return self._chunkSize

    def isLinux(self):
        return self._platform == "Linux"

    def getUserAgent(self):
        return USER_AGENT

    def getSupportURL(self):
        return SUPPORT_URL
