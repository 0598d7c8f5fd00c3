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

import struct
import unittest

from partialzip.Records import (
    CompressionMethod, EntryDescriptor, LocalFileHeader, Zip64ExtraReader,
    iterExtraFields, resolveSentinel, decodeCentralDirHeader, ZIP64_LIMIT32,
)
from partialzip.Errors import DirectoryCorruptError, LocalHeaderCorruptError

from tests.ArchiveFactory import ArchiveFactory


def entry(name, flags=0, **kwargs):
    fields = dict(method=0, crc=0, compressedSize=0, uncompressedSize=0, localHeaderOffset=0)
    fields.update(kwargs)
    return EntryDescriptor(name=name, flags=flags, **fields)


class SentinelTest(unittest.TestCase):

    def testResolveSentinel(self):
        def wide():
            raise AssertionError("wide value must not be read")

        self.assertEqual(resolveSentinel(123, ZIP64_LIMIT32, wide), 123)
        self.assertEqual(resolveSentinel(ZIP64_LIMIT32, ZIP64_LIMIT32, lambda: 1 << 33), 1 << 33)
        print("[OK] Sentinel resolution")

    def testZip64ExtraIsPositional(self):
        extra = struct.pack('<HH', 0x5455, 5) + b'\x01' * 5  # Extended timestamp first
        extra += struct.pack('<HHQQ', 0x0001, 16, 111, 222)

        self.assertEqual([headerId for headerId, _ in iterExtraFields(extra)], [0x5455, 0x0001])

        reader = Zip64ExtraReader(extra)
        self.assertEqual(reader.take('first'), 111)
        self.assertEqual(reader.take('second'), 222)
        with self.assertRaises(DirectoryCorruptError):
            reader.take('third')
        print("[OK] Zip64 extra values consumed in order")

    def testSentinelWithoutZip64Extra(self):
        factory = ArchiveFactory().add('a.txt', b'abcd', zip64=True)
        data = factory.build()
        directoryStart = data.index(b'PK\x01\x02')

        # Drop the Zip64 block but keep the sentinels
        header = bytearray(data[directoryStart:directoryStart + 46 + 5])
        header[30:32] = struct.pack('<H', 0)
        with self.assertRaises(DirectoryCorruptError):
            decodeCentralDirHeader(bytes(header), 0, directoryStart, 0)
        print("[OK] Sentinel without Zip64 extra raises DirectoryCorruptError")


class EntryDescriptorTest(unittest.TestCase):

    def testNameEncoding(self):
        utf8 = entry('café.txt'.encode('utf-8'), flags=0x0800)
        cp437 = entry('café.txt'.encode('cp437'))

        self.assertEqual(utf8.filename, 'café.txt')
        self.assertEqual(cp437.filename, 'café.txt')
        self.assertTrue(utf8.matchesName('café.txt'))
        self.assertTrue(cp437.matchesName('café.txt'))
        self.assertTrue(cp437.matchesName('café.txt'.encode('cp437')))
        self.assertFalse(cp437.matchesName('日本.txt'))
        print("[OK] Names decoded with UTF-8 flag or CP437")

    def testFlags(self):
        self.assertTrue(entry(b'a', flags=0x0001).isEncrypted)
        self.assertTrue(entry(b'a', flags=0x0008).hasDataDescriptor)
        self.assertTrue(entry(b'dir/').isDir)
        self.assertFalse(entry(b'a').isDir)
        print("[OK] Flag helpers")

    def testDateTime(self):
        # 2024-03-15 13:45:30
        dosDate = ((2024 - 1980) << 9) | (3 << 5) | 15
        dosTime = (13 << 11) | (45 << 5) | (30 // 2)
        self.assertEqual(entry(b'a', dosDate=dosDate, dosTime=dosTime).dateTime, (2024, 3, 15, 13, 45, 30))
        print("[OK] DOS date and time decoded")

    def testMethodNames(self):
        self.assertEqual(CompressionMethod.describe(0), 'Stored')
        self.assertEqual(CompressionMethod.describe(8), 'Deflated')
        self.assertEqual(CompressionMethod.describe(93), 'Zstd')
        self.assertEqual(CompressionMethod.describe(1234), 'Method1234')
        print("[OK] Compression method names")


class LocalFileHeaderTest(unittest.TestCase):

    def testDataOffsetUsesLocalLengths(self):
        data = ArchiveFactory().add('a.txt', b'abcd', localExtra=b'\xff\xff\x04\x00abcd').build()
        header = LocalFileHeader.decode(data[:30], 0)
        self.assertEqual(header.nameLength, 5)
        self.assertEqual(header.extraLength, 8)
        self.assertEqual(header.dataOffset, 30 + 5 + 8)
        print("[OK] Local header data offset")

    def testBadSignature(self):
        with self.assertRaises(LocalHeaderCorruptError):
            LocalFileHeader.decode(b'\x00' * 30, 0)
        with self.assertRaises(LocalHeaderCorruptError):
            LocalFileHeader.decode(b'PK\x03\x04', 0)
        print("[OK] LocalHeaderCorruptError on bad or short header")


if __name__ == '__main__':
    unittest.main()
