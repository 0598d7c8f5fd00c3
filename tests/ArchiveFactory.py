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

"""
Hand-built zip archives for layouts the stdlib writer won't produce on small
inputs: forced Zip64 records, missing locators, local extra fields that differ
from the central ones, prepended stubs, unsupported methods.
"""

import io
import struct
import zipfile
import zlib

from dataclasses import dataclass

LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0]  # 0x04034b50
CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0]  # 0x02014b50
END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0]  # 0x06054b50
ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = 0x06064b50
ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE = 0x07064b50

STORE = zipfile.ZIP_STORED
DEFLATE = zipfile.ZIP_DEFLATED

UTF8_FLAG = 0x0800


def deflate(data):
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def buildZip(members, method=zipfile.ZIP_STORED, comment=b''):
    """Archive written by the stdlib zipfile; members is a list of (name, data)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=method) as zf:
        for name, data in members:
            zf.writestr(name, data)
        zf.comment = comment
    return buffer.getvalue()


@dataclass
class Member:
    name: bytes
    data: bytes
    method: int = STORE
    flags: int = UTF8_FLAG
    payload: bytes = None
    crc: int = None
    localExtra: bytes = b''
    centralExtra: bytes = b''
    localName: bytes = None
    zip64: bool = False


class ArchiveFactory:

    def __init__(self, prefix=b'', comment=b''):
        self.prefix = prefix
        self.comment = comment
        self.members = []

    def add(self, name, data, method=STORE, **kwargs):
        if isinstance(name, str):
            name = name.encode('utf-8')
        member = Member(name, data, method, **kwargs)
        if member.payload is None:
            member.payload = deflate(data) if method == DEFLATE else data
        if member.crc is None:
            member.crc = zlib.crc32(data)
        self.members.append(member)
        return self

    @staticmethod
    def _zip64Extra(*values):
        data = b''.join(struct.pack('<Q', value) for value in values)
        return struct.pack('<HH', 0x0001, len(data)) + data

    def _makeLocalFileHeader(self, member):
        if member.zip64:
            sizes = (0xFFFFFFFF, 0xFFFFFFFF)
            extra = self._zip64Extra(len(member.data), len(member.payload)) + member.localExtra
        else:
            sizes = (len(member.payload), len(member.data))
            extra = member.localExtra
        name = member.name if member.localName is None else member.localName

        header = struct.pack(
            '<IHHHHHIII', LOCAL_FILE_HEADER_SIGNATURE, 45 if member.zip64 else 20, member.flags, member.method,
            0, (1 << 5) | 1, member.crc, *sizes
        )
        header += struct.pack('<HH', len(name), len(extra))
        return header + name + extra

    def _makeCentralDirHeader(self, member, offset):
        if member.zip64:
            compressedSize = uncompressedSize = recordedOffset = 0xFFFFFFFF
            # Order: uncompressed size, compressed size, relative header offset
            extra = self._zip64Extra(len(member.data), len(member.payload), offset) + member.centralExtra
        else:
            compressedSize, uncompressedSize, recordedOffset = len(member.payload), len(member.data), offset
            extra = member.centralExtra

        header = struct.pack(
            '<IHHHHHHIII', CENTRAL_DIR_SIGNATURE, 45 if member.zip64 else 20, 45 if member.zip64 else 20,
            member.flags, member.method, 0, (1 << 5) | 1, member.crc, compressedSize, uncompressedSize
        )
        header += struct.pack('<HHHHHII', len(member.name), len(extra), 0, 0, 0, 0x20, recordedOffset)
        return header + member.name + extra

    @staticmethod
    def _makeZip64EndOfCentralDir(entryCount, centralDirSize, centralDirStart):
        record = struct.pack('<IQHHII', ZIP64_END_OF_CENTRAL_DIR_SIGNATURE, 44, 45, 45, 0, 0)
        record += struct.pack('<QQQQ', entryCount, entryCount, centralDirSize, centralDirStart)
        return record

    @staticmethod
    def _makeZip64Locator(zip64EocdOffset):
        return struct.pack('<IIQI', ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE, 0, zip64EocdOffset, 1)

    def _makeEndOfCentralDir(self, entryCount, centralDirSize, centralDirStart, zip64):
        if zip64:
            entryCount, centralDirSize, centralDirStart = 0xFFFF, 0xFFFFFFFF, 0xFFFFFFFF
        eocd = struct.pack(
            '<IHHHHIIH', END_OF_CENTRAL_DIR_SIGNATURE, 0, 0, entryCount, entryCount,
            centralDirSize, centralDirStart, len(self.comment)
        )
        return eocd + self.comment

    def build(self, zip64=False, zip64Locator=True, sentinels=True):
        """
        Args:
            zip64: Write sentinels in the EOCD and a Zip64 End Of Central Directory
            zip64Locator: With zip64, whether the Zip64 record and locator are written at all
            sentinels: With zip64, False keeps the real values in the EOCD next to the Zip64 records
        """
        archive = bytearray()
        offsets = []
        for member in self.members:
            offsets.append(len(archive))
            archive += self._makeLocalFileHeader(member) + member.payload

        centralDirStart = len(archive)
        for member, offset in zip(self.members, offsets):
            archive += self._makeCentralDirHeader(member, offset)
        centralDirSize = len(archive) - centralDirStart

        if zip64 and zip64Locator:
            zip64EocdOffset = len(archive)
            archive += self._makeZip64EndOfCentralDir(len(self.members), centralDirSize, centralDirStart)
            archive += self._makeZip64Locator(zip64EocdOffset)

        archive += self._makeEndOfCentralDir(len(self.members), centralDirSize, centralDirStart, zip64 and sentinels)
        return self.prefix + bytes(archive)
