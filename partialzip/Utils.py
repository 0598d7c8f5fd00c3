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
import socket
import sys

import bitmath
import requests

from urllib.parse import urlparse

from urllib3.connection import HTTPConnection
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from partialzip.Kernel import getLogger
from partialzip.Settings import SettingsGetter

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

logger = getLogger(__name__)


# flush is required when stdout is piped into another tool.
def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        # Terminals without UTF-8 (e.g. cp950 consoles) can't show every entry name
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {sys.stdout.encoding=}")

        buf = getattr(sys.stdout, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
            return

        print(text.encode(sys.stdout.encoding, errors='replace').decode(sys.stdout.encoding), flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB:
            decimal = 0
        elif size < ONE_TB:
            decimal = 1
        else:
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes') and not sizeStr.endswith('Bits'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte').replace('Bit', ' Byte')


def sendException(logger, e, action=None, errorPrefix="Oops, something went wrong"):
    if e and errorPrefix:
        flushPrint(f'{errorPrefix}: {e}')
    elif e:
        flushPrint(f'{e}')
    else:
        logger.error(f'Incorrect argument: {errorPrefix=} {e=}')

    if action:
        flushPrint(action)

    supportURL = SettingsGetter.getInstance().getSupportURL()
    flushPrint(f'\nIf this looks like a bug, please report it at {supportURL}.')

    if isinstance(e, BaseException):
        logger.debug(f'{type(e).__name__}: {e}', exc_info=e)

    if os.getenv('RAISE_EXCEPTION', 'False') == 'True' and isinstance(e, BaseException):
        raise e


def defaultFileMode():
    """Mode open() would give a new file under the current umask"""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

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


def isValidURL(url):
    """Only absolute http(s) URLs with a host can be range-fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


class StallResilientAdapter(HTTPAdapter):
    """
    HTTP adapter with TCP keepalive (and TCP_USER_TIMEOUT on Linux) so a dead
    connection fails as a transport error instead of hanging a range fetch.

    urllib3 retries are disabled: retry policy belongs to the caller, not to
    the range fetch.
    """

    DEFAULT_SOCKET_OPTIONS = HTTPConnection.default_socket_options

    def __init__(self, stallTimeoutMs: int = None, *args, **kwargs):
        settingsGetter = SettingsGetter.getInstance()

        if stallTimeoutMs is None:
            stallTimeoutMs = int(settingsGetter.timeout * 1000)
        self.stallTimeoutMs = stallTimeoutMs
        self.isLinux = settingsGetter.isLinux()

        kwargs['max_retries'] = Retry(total=0)

        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        socketOptions = list(self.DEFAULT_SOCKET_OPTIONS)

        socketOptions.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        if hasattr(socket, "TCP_KEEPIDLE"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 30))
        if hasattr(socket, "TCP_KEEPINTVL"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))
        if hasattr(socket, "TCP_KEEPCNT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3))

        if self.isLinux and hasattr(socket, "TCP_USER_TIMEOUT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_USER_TIMEOUT, self.stallTimeoutMs))

        kwargs["socket_options"] = socketOptions

        super().init_poolmanager(connections, maxsize, block=block, **kwargs)


def createSession():
    """requests.Session with the stall resilient adapter mounted for http and https."""
    session = requests.Session()
    adapter = StallResilientAdapter()
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    session.headers['User-Agent'] = SettingsGetter.getInstance().getUserAgent()
    # Servers must not transcode the bytes we slice
    session.headers['Accept-Encoding'] = 'identity'
    return session
