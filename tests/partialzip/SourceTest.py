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
import tempfile
import threading
import unittest

import requests
import requests_mock

from partialzip.Kernel import ArchiveEvent
from partialzip.Source import RangeSource, BytesRangeSource, FileRangeSource, HTTPRangeSource, parseContentRange
from partialzip.Errors import (
    TransportError, RangeUnsupportedError, SizeUnknownError, OutOfBoundsError, CancelledError, InvalidURLError
)

from tests.RangeFixtures import RangeServerMock

URL = 'https://example.com/archive.zip'
DATA = bytes(range(256)) * 16


class BytesRangeSourceTest(unittest.TestCase):

    def testFetchReturnsExactSlice(self):
        source = BytesRangeSource(DATA)
        self.assertEqual(source.length(), len(DATA))
        self.assertEqual(source.fetch(10, 20), DATA[10:20])
        self.assertEqual(source.fetch(len(DATA) - 1, len(DATA)), DATA[-1:])
        print("[OK] Bytes source returns exact slices")

    def testEmptyRangeNeedsNoIO(self):
        source = BytesRangeSource(DATA)
        self.assertEqual(source.fetch(5, 5), b'')
        self.assertEqual(source.fetch(len(DATA), len(DATA)), b'')
        print("[OK] Empty range returns b''")

    def testOutOfBounds(self):
        source = BytesRangeSource(DATA)
        with self.assertRaises(OutOfBoundsError):
            source.fetch(0, len(DATA) + 1)
        with self.assertRaises(OutOfBoundsError):
            source.fetch(20, 10)
        with self.assertRaises(OutOfBoundsError):
            source.fetch(-1, 10)
        print("[OK] Invalid ranges raise OutOfBoundsError")

    def testCancelledFetch(self):
        cancelEvent = threading.Event()
        source = BytesRangeSource(DATA, cancelEvent=cancelEvent)
        self.assertEqual(source.fetch(0, 4), DATA[:4])

        cancelEvent.set()
        with self.assertRaises(CancelledError):
            source.fetch(0, 4)

        # Nothing sticky: clearing the event makes the source usable again
        cancelEvent.clear()
        self.assertEqual(source.fetch(0, 4), DATA[:4])
        print("[OK] Cancellation raises CancelledError and leaves the source usable")

    def testRangeFetchEvent(self):
        seen = []

        def onRangeFetch(start, end, source, **kwargs):
            seen.append((start, end, source))

        source = BytesRangeSource(DATA)
        ArchiveEvent.rangeFetch.subscribe(onRangeFetch)
        try:
            source.fetch(1, 3)
            source.fetch(3, 3)
        finally:
            ArchiveEvent.rangeFetch.unsubscribe(onRangeFetch)

        self.assertEqual(seen, [(1, 3, source)])
        print("[OK] rangeFetch event fires once per real fetch")


class FileRangeSourceTest(unittest.TestCase):

    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix='.zip')
        with os.fdopen(fd, 'wb') as f:
            f.write(DATA)

    def tearDown(self):
        os.remove(self.path)

    def testFetch(self):
        source = FileRangeSource(self.path)
        self.assertEqual(source.length(), len(DATA))
        self.assertEqual(source.fetch(100, 200), DATA[100:200])
        print("[OK] File source reads ranges")

    def testBuildPicksSourceType(self):
        self.assertIsInstance(RangeSource.build(self.path), FileRangeSource)
        self.assertIsInstance(RangeSource.build(DATA), BytesRangeSource)
        self.assertIsInstance(RangeSource.build(URL), HTTPRangeSource)

        with self.assertRaises(InvalidURLError):
            RangeSource.build(self.path + '.missing')
        with self.assertRaises(InvalidURLError):
            RangeSource.build('ftp://example.com/a.zip')
        print("[OK] RangeSource.build picks the right source")


class ContentRangeTest(unittest.TestCase):

    def testParse(self):
        self.assertEqual(parseContentRange('bytes 0-0/1234'), (0, 0, 1234))
        self.assertEqual(parseContentRange('bytes 10-19/*'), (10, 19, None))
        self.assertIsNone(parseContentRange('bytes */1234'))
        self.assertIsNone(parseContentRange(None))
        print("[OK] Content-Range parsing")


class HTTPRangeSourceTest(unittest.TestCase):

    def setUp(self):
        self.mocker = requests_mock.Mocker()
        self.mocker.start()

    def tearDown(self):
        self.mocker.stop()

    def testInvalidURL(self):
        for url in ('example.com/a.zip', 'file:///tmp/a.zip', 'https://'):
            with self.subTest(url=url):
                with self.assertRaises(InvalidURLError):
                    HTTPRangeSource(url)
        print("[OK] Invalid URLs rejected")

    def testLengthFromHeadAndRangeFetch(self):
        server = RangeServerMock(DATA).install(self.mocker, URL)
        source = HTTPRangeSource(URL, requireRange=True)

        self.assertEqual(source.length(), len(DATA))
        self.assertEqual(server.rangeHeaders, ['bytes=0-0'])

        self.assertEqual(source.fetch(1000, 1100), DATA[1000:1100])
        self.assertEqual(server.rangeHeaders[-1], 'bytes=1000-1099')
        print("[OK] HEAD size, range check and range fetch")

    def testLengthComputedOnce(self):
        RangeServerMock(DATA).install(self.mocker, URL)
        source = HTTPRangeSource(URL, requireRange=False)

        source.length()
        source.length()
        source.fetch(0, 10)

        heads = [r for r in self.mocker.request_history if r.method == 'HEAD']
        self.assertEqual(len(heads), 1)
        print("[OK] Length fetched once")

    def testLengthFromContentRangeWhenHeadHasNoLength(self):
        server = RangeServerMock(DATA, sendContentLength=False)
        self.mocker.head(URL, headers={})
        self.mocker.get(URL, content=server._serve)

        source = HTTPRangeSource(URL, requireRange=False)
        self.assertEqual(source.length(), len(DATA))
        print("[OK] Size from the range check's Content-Range")

    def testUnknownSize(self):
        self.mocker.head(URL, headers={})
        self.mocker.get(URL, status_code=206, content=b'P', headers={'Content-Range': 'bytes 0-0/*'})

        source = HTTPRangeSource(URL, requireRange=False)
        with self.assertRaises(SizeUnknownError):
            source.length()
        print("[OK] SizeUnknownError without a definite size")

    def testRangeCheckRejectsServerWithoutRanges(self):
        server = RangeServerMock(DATA, honourRange=False).install(self.mocker, URL)
        source = HTTPRangeSource(URL, requireRange=True)

        with self.assertRaises(RangeUnsupportedError):
            source.length()
        self.assertEqual(server.rangeHeaders, ['bytes=0-0'])
        print("[OK] Range check fails fast")

    def testFullBodyForPartialRangeIsRangeUnsupported(self):
        RangeServerMock(DATA, honourRange=False).install(self.mocker, URL)
        source = HTTPRangeSource(URL, requireRange=False)

        with self.assertRaises(RangeUnsupportedError):
            source.fetch(len(DATA) - 22, len(DATA))

        # The whole resource is a legitimate answer to a whole-resource range
        self.assertEqual(source.fetch(0, len(DATA)), DATA)
        print("[OK] 200 for a partial range is RangeUnsupportedError")

    def testStatusMapping(self):
        self.mocker.head(URL, headers={'Content-Length': str(len(DATA))})
        source = HTTPRangeSource(URL, requireRange=False)

        self.mocker.get(URL, status_code=416)
        with self.assertRaises(OutOfBoundsError):
            source.fetch(0, 10)

        self.mocker.get(URL, status_code=503)
        with self.assertRaises(TransportError) as ctx:
            source.fetch(0, 10)
        self.assertEqual(ctx.exception.statusCode, 503)

        self.mocker.get(URL, exc=requests.exceptions.ConnectTimeout)
        with self.assertRaises(TransportError):
            source.fetch(0, 10)
        print("[OK] HTTP status mapping")

    def testShortBodyIsTransportError(self):
        self.mocker.head(URL, headers={'Content-Length': str(len(DATA))})
        self.mocker.get(URL, status_code=206, content=DATA[:5], headers={'Content-Range': f'bytes 0-9/{len(DATA)}'})

        source = HTTPRangeSource(URL, requireRange=False)
        with self.assertRaises(TransportError):
            source.fetch(0, 10)
        print("[OK] Short body raises TransportError")

    def testHeadFailure(self):
        self.mocker.head(URL, status_code=404)
        source = HTTPRangeSource(URL)
        with self.assertRaises(TransportError) as ctx:
            source.length()
        self.assertEqual(ctx.exception.statusCode, 404)
        print("[OK] HEAD 404 raises TransportError")


if __name__ == '__main__':
    unittest.main()
