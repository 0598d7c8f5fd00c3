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
import re
import threading

from typing import Optional

import requests

from partialzip.Kernel import getLogger, ArchiveEvent
from partialzip.Settings import SettingsGetter
from partialzip.Errors import (
    TransportError, RangeUnsupportedError, SizeUnknownError, OutOfBoundsError, CancelledError, InvalidURLError
)
from partialzip.Utils import createSession, isValidURL

# Body chunk size while reading a range response; cancellation is checked between chunks
RESPONSE_CHUNK_SIZE = 64 * 1024

logger = getLogger(__name__)


def parseContentRange(contentRange):
    """
    Parse a "Content-Range: bytes start-end/total" header.

    Returns:
        tuple: (start, end, total) with end inclusive and total None for "*",
               or None if the header is missing or malformed
    """
    if not contentRange:
        return None

    reg = re.match(r'^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$', contentRange)
    if not reg:
        return None

    start, end, total = reg.groups()
    return int(start), int(end), (None if total == '*' else int(total))


class RangeSource:
    """
    A resource that can be read by half-open byte ranges.

    Subclasses implement _fetchLength() and _fetchRange(); the public length()
    and fetch() enforce the contract every other component relies on:
    - length() is resolved at most once (write-once, read-many)
    - fetch(start, end) returns exactly end - start bytes or raises
    - no state is kept between fetches, so concurrent callers are fine
    """

    def __init__(self, cancelEvent: Optional[threading.Event] = None):
        self.cancelEvent = cancelEvent
        self._length = None
        self._lengthLock = threading.Lock()

    @property
    def name(self) -> str:
        raise NotImplementedError

    @classmethod
    def build(cls, location, **kwargs) -> 'RangeSource':
        """
        Factory method to create the appropriate RangeSource

        Args:
            location: http(s) URL, path to a local file, or the archive bytes themselves
            kwargs: passed to the concrete source (cancelEvent, session, timeout, requireRange)

        Returns:
            RangeSource: Source for the location
        """
        if isinstance(location, (bytes, bytearray, memoryview)):
            return BytesRangeSource(location, cancelEvent=kwargs.get('cancelEvent'))

        location = os.fspath(location)

        if re.match(r'^[A-Za-z][A-Za-z0-9+.-]*://', location):
            return HTTPRangeSource(location, **kwargs)

        if os.path.isfile(location):
            return FileRangeSource(location, cancelEvent=kwargs.get('cancelEvent'))

        raise InvalidURLError(f"Not a URL or an existing file: {location}")

    def length(self) -> int:
        if self._length is None:
            with self._lengthLock:
                if self._length is None:
                    size = self._fetchLength()
                    if size is None or size < 0:
                        raise SizeUnknownError(f"{self.name} does not report its size", actual=size)
                    logger.debug(f"{self.name} is {size} bytes")
                    self._length = size
        return self._length

    def fetch(self, start: int, end: int) -> bytes:
        """
        Fetch bytes [start, end) of the resource.

        Raises:
            OutOfBoundsError: If the range is inverted or ends past length()
            RangeUnsupportedError: If the resource cannot serve partial content
            TransportError: On any I/O failure or short read
            CancelledError: If cancelEvent is set before or during the fetch
        """
        self.checkCancelled()

        size = self.length()
        if start < 0 or end < start:
            raise OutOfBoundsError(f"Invalid range [{start}, {end}) of {self.name}", offset=start)
        if end > size:
            raise OutOfBoundsError(f"Range [{start}, {end}) exceeds {self.name}", offset=end, expected=size)
        if start == end:
            return b''

        data = self._fetchRange(start, end)
        if len(data) != end - start:
            raise TransportError(
                f"Short read from {self.name} at [{start}, {end})", offset=start, expected=end - start, actual=len(data)
            )

        logger.debug(f"Fetched [{start}, {end}) ({end - start} bytes) from {self.name}")
        ArchiveEvent.rangeFetch.trigger(source=self, start=start, end=end)
        return data

    def checkCancelled(self):
        if self.cancelEvent is not None and self.cancelEvent.is_set():
            raise CancelledError(f"Fetch from {self.name} cancelled")

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, excType, exc, tb):
        self.close()

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'

    def _fetchLength(self) -> Optional[int]:
        raise NotImplementedError

    def _fetchRange(self, start: int, end: int) -> bytes:
        raise NotImplementedError


class BytesRangeSource(RangeSource):
    """RangeSource over an in-memory buffer"""

    def __init__(self, data, name: str = '<memory>', cancelEvent=None):
        super().__init__(cancelEvent=cancelEvent)
        self._data = memoryview(bytes(data))
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def _fetchLength(self):
        return len(self._data)

    def _fetchRange(self, start, end):
        return self._data[start:end].tobytes()


class FileRangeSource(RangeSource):
    """RangeSource over a local file. The file is opened per fetch, nothing is held open."""

    def __init__(self, path: str, cancelEvent=None):
        super().__init__(cancelEvent=cancelEvent)
        if not os.path.isfile(path):
            raise ValueError(f"Not a file: {path}")
        self.path = path

    @property
    def name(self) -> str:
        return self.path

    def _fetchLength(self):
        try:
            return os.path.getsize(self.path)
        except OSError as e:
            raise TransportError(f"Unable to stat {self.path}: {e}") from e

    def _fetchRange(self, start, end):
        try:
            with open(self.path, 'rb') as f:
                f.seek(start)
                return f.read(end - start)
        except OSError as e:
            raise TransportError(f"Unable to read {self.path}: {e}", offset=start) from e


class HTTPRangeSource(RangeSource):
    """
    RangeSource over HTTP(S) using "Range: bytes=a-b" requests.

    Size comes from HEAD (Content-Length), falling back to the total of a
    "bytes=0-0" request's Content-Range. With requireRange that request is always
    made and anything but a one byte 206 answer is RangeUnsupportedError, so
    servers that ignore ranges are rejected before any archive bytes move.
    """

    def __init__(
        self,
        url: str,
        session: requests.Session = None,
        timeout: float = None,
        requireRange: bool = None,
        cancelEvent=None,
    ):
        super().__init__(cancelEvent=cancelEvent)

        if not isValidURL(url):
            raise InvalidURLError(f"Invalid URL: {url}")

        settingsGetter = SettingsGetter.getInstance()

        self.url = url
        self.timeout = settingsGetter.timeout if timeout is None else timeout
        self.requireRange = settingsGetter.requireRange if requireRange is None else requireRange
        self._ownSession = session is None
        self.session = createSession() if session is None else session

    @property
    def name(self) -> str:
        return self.url

    def close(self):
        if self._ownSession:
            self.session.close()

    def _request(self, method, headers=None, stream=False):
        self.checkCancelled()
        try:
            return self.session.request(
                method, self.url, headers=headers, stream=stream, timeout=self.timeout, allow_redirects=True
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {self.url} failed: {e}") from e

    def _fetchLength(self):
        response = self._request('HEAD', stream=True)
        with response:
            if response.status_code >= 400:
                raise TransportError(
                    f"HEAD {self.url} returned HTTP {response.status_code}", statusCode=response.status_code
                )
            contentLength = response.headers.get('Content-Length', '')
            size = int(contentLength) if contentLength.isdigit() else None

        if size == 0:
            return size

        if self.requireRange or size is None:
            checkedSize = self._checkRange()
            if size is None:
                size = checkedSize

        return size

    def _checkRange(self):
        """Request the first byte. Returns the total size if the server reveals it."""
        response = self._request('GET', headers={'Range': 'bytes=0-0'}, stream=True)
        with response:
            status = response.status_code

            if status == 206:
                contentRange = parseContentRange(response.headers.get('Content-Range'))
                body = self._readBody(response, 0)
                if len(body) != 1:
                    raise RangeUnsupportedError(
                        f"{self.url} answered a one byte range with {len(body)} bytes", expected=1, actual=len(body)
                    )
                logger.debug(f"{self.url} supports range requests")
                return contentRange[2] if contentRange else None

            if status >= 400 and status != 416:
                raise TransportError(f"GET {self.url} returned HTTP {status}", statusCode=status)

            if self.requireRange:
                raise RangeUnsupportedError(
                    f"{self.url} does not support range requests", expected=206, actual=status
                )

            # Range ignored; a 200 still tells us the size. The body is never read.
            contentLength = response.headers.get('Content-Length', '')
            return int(contentLength) if status == 200 and contentLength.isdigit() else None

    def _fetchRange(self, start, end):
        response = self._request('GET', headers={'Range': f'bytes={start}-{end - 1}'}, stream=True)
        with response:
            status = response.status_code

            if status == 200:
                if start != 0 or end != self.length():
                    raise RangeUnsupportedError(
                        f"{self.url} ignored the range request and sent the whole resource",
                        offset=start, expected=206, actual=status
                    )
            elif status == 416:
                raise OutOfBoundsError(
                    f"{self.url} rejected range [{start}, {end})", offset=start, expected=self.length()
                )
            elif status != 206:
                raise TransportError(f"GET {self.url} returned HTTP {status}", statusCode=status, offset=start)
            else:
                contentRange = parseContentRange(response.headers.get('Content-Range'))
                if contentRange is not None and contentRange[0] != start:
                    raise TransportError(
                        f"{self.url} answered with a different range", offset=start,
                        expected=start, actual=contentRange[0]
                    )

            return self._readBody(response, start)

    def _readBody(self, response, start):
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=RESPONSE_CHUNK_SIZE):
                self.checkCancelled()
                chunks.append(chunk)
        except requests.RequestException as e:
            raise TransportError(f"Reading {self.url} failed: {e}", offset=start) from e
        return b''.join(chunks)
