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
Fixed-layout ZIP records (PKWARE APPNOTE.TXT), decoded from raw bytes.

Nothing here performs I/O; callers hand in bytes they already fetched and the
absolute offset those bytes came from, so errors can point at the archive.
"""

import struct
import zipfile

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterator, Optional, Tuple

from partialzip.Errors import CorruptZip64Error, DirectoryCorruptError, LocalHeaderCorruptError

# Signature constants, as the bytes found in the archive
LOCAL_FILE_HEADER_SIGNATURE = zipfile.stringFileHeader  # PK\x03\x04
CENTRAL_DIR_SIGNATURE = zipfile.stringCentralDir  # PK\x01\x02
END_OF_CENTRAL_DIR_SIGNATURE = zipfile.stringEndArchive  # PK\x05\x06
ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = b'PK\x06\x06'
ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE = b'PK\x06\x07'

END_OF_CENTRAL_DIR_STRUCT = struct.Struct('<4s4H2LH')  # 22 bytes
ZIP64_LOCATOR_STRUCT = struct.Struct('<4sLQL')  # 20 bytes
ZIP64_END_OF_CENTRAL_DIR_STRUCT = struct.Struct('<4sQ2H2L4Q')  # 56 bytes
CENTRAL_DIR_STRUCT = struct.Struct('<4s6H3L5H2L')  # 46 bytes
LOCAL_FILE_HEADER_STRUCT = struct.Struct('<4s5H3L2H')  # 30 bytes

# Largest comment an EOCD can carry
MAX_COMMENT_LENGTH = 0xFFFF

# Sentinels meaning "the real value lives in a Zip64 record"
ZIP64_LIMIT16 = 0xFFFF
ZIP64_LIMIT32 = 0xFFFFFFFF

ZIP64_EXTRA_ID = 0x0001

# General purpose bit flags
ENCRYPTED_FLAG = 0x0001  # Bit 0
LZMA_EOS_FLAG = 0x0002  # Bit 1, LZMA only: stream has an end marker
DATA_DESCRIPTOR_FLAG = 0x0008  # Bit 3: sizes/CRC in data descriptor
UTF8_FLAG = 0x0800  # Bit 11: filename and comment UTF-8 encoded


class CompressionMethod(IntEnum):
    STORED = zipfile.ZIP_STORED  # 0
    DEFLATED = zipfile.ZIP_DEFLATED  # 8
    DEFLATE64 = 9
    BZIP2 = zipfile.ZIP_BZIP2  # 12
    LZMA = zipfile.ZIP_LZMA  # 14
    ZSTD = 93
    XZ = 95
    PPMD = 98
    AES = 99

    @classmethod
    def describe(cls, method: int) -> str:
        try:
            return cls(method).name.capitalize()
        except ValueError:
            return f'Method{method}'


def resolveSentinel(value: int, sentinel: int, wide: Callable[[], int]) -> int:
    """
    Two-step field resolution shared by the EOCD and directory entries.

    Returns value unchanged unless it equals the format's sentinel, in which
    case wide() supplies the 64-bit replacement. wide() raises when the Zip64
    data it reads from is missing, so a sentinel can never leak out as a size.
    """
    if value != sentinel:
        return value
    return wide()


def iterExtraFields(extra: bytes) -> Iterator[Tuple[int, bytes]]:
    """Yield (headerId, data) for each block of an extra field. A truncated last block yields what is there."""
    pos = 0
    while pos + 4 <= len(extra):
        headerId, size = struct.unpack_from('<HH', extra, pos)
        pos += 4
        yield headerId, extra[pos:pos + size]
        pos += size


class Zip64ExtraReader:
    """
    Positional reader over a Zip64 extended information block (header 0x0001).

    Values appear in fixed order (uncompressed size, compressed size, local
    header offset, disk number) but only for the fields that hold a sentinel
    in the fixed header, so each take() consumes the next one.
    """

    def __init__(self, extra: bytes, name: bytes = b'', offset: int = None):
        self._data = b''
        for headerId, data in iterExtraFields(extra):
            if headerId == ZIP64_EXTRA_ID:
                self._data = data
                break
        self._pos = 0
        self._name = name
        self._offset = offset

    def take(self, fieldName: str, size: int = 8) -> int:
        if self._pos + size > len(self._data):
            raise DirectoryCorruptError(
                f"{self._name!r}: {fieldName} is a Zip64 sentinel but the Zip64 extra field does not carry it",
                offset=self._offset, expected=self._pos + size, actual=len(self._data)
            )
        value = int.from_bytes(self._data[self._pos:self._pos + size], 'little')
        self._pos += size
        return value


@dataclass(frozen=True)
class EndOfDirectoryRecord:
    offset: int
    diskNumber: int
    directoryDisk: int
    entriesOnDisk: int
    entryCount: int
    directorySize: int
    directoryOffset: int
    commentLength: int
    comment: bytes = b''

    @classmethod
    def decode(cls, data: bytes, pos: int, offset: int) -> 'EndOfDirectoryRecord':
        """Decode the record at data[pos:]; offset is its absolute position in the archive."""
        (
            signature, diskNumber, directoryDisk, entriesOnDisk, entryCount,
            directorySize, directoryOffset, commentLength
        ) = END_OF_CENTRAL_DIR_STRUCT.unpack_from(data, pos)
        commentStart = pos + END_OF_CENTRAL_DIR_STRUCT.size
        return cls(
            offset=offset,
            diskNumber=diskNumber,
            directoryDisk=directoryDisk,
            entriesOnDisk=entriesOnDisk,
            entryCount=entryCount,
            directorySize=directorySize,
            directoryOffset=directoryOffset,
            commentLength=commentLength,
            comment=bytes(data[commentStart:commentStart + commentLength]),
        )

    @property
    def needsZip64(self) -> bool:
        return (
            self.entryCount == ZIP64_LIMIT16 or
            self.directorySize == ZIP64_LIMIT32 or
            self.directoryOffset == ZIP64_LIMIT32
        )


@dataclass(frozen=True)
class Zip64Locator:
    offset: int
    recordDisk: int
    recordOffset: int
    totalDisks: int

    @classmethod
    def decode(cls, data: bytes, offset: int) -> 'Zip64Locator':
        if len(data) < ZIP64_LOCATOR_STRUCT.size:
            raise CorruptZip64Error("Truncated Zip64 locator", offset=offset)

        signature, recordDisk, recordOffset, totalDisks = ZIP64_LOCATOR_STRUCT.unpack_from(data)
        if signature != ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE:
            raise CorruptZip64Error(
                "Zip64 locator missing before the End Of Central Directory", offset=offset,
                expected=ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE, actual=signature
            )
        return cls(offset, recordDisk, recordOffset, totalDisks)


@dataclass(frozen=True)
class Zip64EndOfDirectoryRecord:
    offset: int
    recordSize: int
    entriesOnDisk: int
    entryCount: int
    directorySize: int
    directoryOffset: int

    @classmethod
    def decode(cls, data: bytes, offset: int) -> 'Zip64EndOfDirectoryRecord':
        if len(data) < ZIP64_END_OF_CENTRAL_DIR_STRUCT.size:
            raise CorruptZip64Error("Truncated Zip64 End Of Central Directory", offset=offset)

        (
            signature, recordSize, versionMadeBy, versionNeeded, diskNumber, directoryDisk,
            entriesOnDisk, entryCount, directorySize, directoryOffset
        ) = ZIP64_END_OF_CENTRAL_DIR_STRUCT.unpack_from(data)
        if signature != ZIP64_END_OF_CENTRAL_DIR_SIGNATURE:
            raise CorruptZip64Error(
                "Bad Zip64 End Of Central Directory signature", offset=offset,
                expected=ZIP64_END_OF_CENTRAL_DIR_SIGNATURE, actual=signature
            )
        return cls(offset, recordSize, entriesOnDisk, entryCount, directorySize, directoryOffset)


@dataclass(frozen=True)
class EntryDescriptor:
    """One central directory entry. Sizes and offsets are already Zip64-resolved."""

    name: bytes
    method: int
    flags: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    localHeaderOffset: int
    dosTime: int = 0
    dosDate: int = 0
    extra: bytes = b''
    comment: bytes = b''
    index: int = 0
    supported: bool = True
    unsupportedReason: Optional[str] = None

    @property
    def nameEncoding(self) -> str:
        return 'utf-8' if self.flags & UTF8_FLAG else 'cp437'

    @property
    def filename(self) -> str:
        return self.name.decode(self.nameEncoding, errors='replace')

    @property
    def methodName(self) -> str:
        return CompressionMethod.describe(self.method)

    @property
    def isDir(self) -> bool:
        return self.name.endswith(b'/')

    @property
    def isEncrypted(self) -> bool:
        return bool(self.flags & ENCRYPTED_FLAG)

    @property
    def hasDataDescriptor(self) -> bool:
        return bool(self.flags & DATA_DESCRIPTOR_FLAG)

    @property
    def dateTime(self) -> Tuple[int, int, int, int, int, int]:
        """(year, month, day, hour, minute, second) from the DOS fields"""
        return (
            (self.dosDate >> 9) + 1980, (self.dosDate >> 5) & 0xF, self.dosDate & 0x1F,
            self.dosTime >> 11, (self.dosTime >> 5) & 0x3F, (self.dosTime & 0x1F) * 2,
        )

    def encodeQuery(self, query) -> Optional[bytes]:
        """Bytes a query must equal to name this entry. None if the query can't be expressed in its encoding."""
        if isinstance(query, (bytes, bytearray)):
            return bytes(query)
        try:
            return query.encode(self.nameEncoding)
        except UnicodeEncodeError:
            return None

    def matchesName(self, query) -> bool:
        return self.encodeQuery(query) == self.name


def decodeCentralDirHeader(data: bytes, pos: int, offset: int, index: int) -> Tuple[EntryDescriptor, int]:
    """
    Decode the central directory header at data[pos:].

    Args:
        data: Central directory bytes
        pos: Position of the header within data
        offset: Absolute archive offset of data[0], for error context
        index: Position of the entry in directory order

    Returns:
        tuple: (EntryDescriptor, position of the next header)
    """
    headerEnd = pos + CENTRAL_DIR_STRUCT.size
    if headerEnd > len(data):
        raise DirectoryCorruptError(
            f"Central directory truncated at entry {index}", offset=offset + pos,
            expected=CENTRAL_DIR_STRUCT.size, actual=len(data) - pos
        )

    (
        signature, versionMadeBy, versionNeeded, flags, method, dosTime, dosDate,
        crc, compressedSize, uncompressedSize,
        nameLength, extraLength, commentLength, diskStart, internalAttr,
        externalAttr, localHeaderOffset
    ) = CENTRAL_DIR_STRUCT.unpack_from(data, pos)

    if signature != CENTRAL_DIR_SIGNATURE:
        raise DirectoryCorruptError(
            f"Bad central directory signature at entry {index}", offset=offset + pos,
            expected=CENTRAL_DIR_SIGNATURE, actual=signature
        )

    nameEnd = headerEnd + nameLength
    extraEnd = nameEnd + extraLength
    commentEnd = extraEnd + commentLength
    if commentEnd > len(data):
        raise DirectoryCorruptError(
            f"Central directory entry {index} runs past the directory", offset=offset + pos,
            expected=commentEnd - pos, actual=len(data) - pos
        )

    name = bytes(data[headerEnd:nameEnd])
    extra = bytes(data[nameEnd:extraEnd])
    comment = bytes(data[extraEnd:commentEnd])

    zip64 = Zip64ExtraReader(extra, name=name, offset=offset + pos)
    uncompressedSize = resolveSentinel(
        uncompressedSize, ZIP64_LIMIT32, lambda: zip64.take('uncompressed size')
    )
    compressedSize = resolveSentinel(
        compressedSize, ZIP64_LIMIT32, lambda: zip64.take('compressed size')
    )
    localHeaderOffset = resolveSentinel(
        localHeaderOffset, ZIP64_LIMIT32, lambda: zip64.take('local header offset')
    )
    resolveSentinel(diskStart, ZIP64_LIMIT16, lambda: zip64.take('disk number', 4))

    entry = EntryDescriptor(
        name=name,
        method=method,
        flags=flags,
        crc=crc,
        compressedSize=compressedSize,
        uncompressedSize=uncompressedSize,
        localHeaderOffset=localHeaderOffset,
        dosTime=dosTime,
        dosDate=dosDate,
        extra=extra,
        comment=comment,
        index=index,
    )
    return entry, commentEnd


@dataclass(frozen=True)
class LocalFileHeader:
    offset: int
    flags: int
    method: int
    nameLength: int
    extraLength: int

    @property
    def size(self) -> int:
        return LOCAL_FILE_HEADER_STRUCT.size + self.nameLength + self.extraLength

    @property
    def dataOffset(self) -> int:
        return self.offset + self.size

    @classmethod
    def decode(cls, data: bytes, offset: int) -> 'LocalFileHeader':
        if len(data) < LOCAL_FILE_HEADER_STRUCT.size:
            raise LocalHeaderCorruptError(
                "Local file header truncated", offset=offset,
                expected=LOCAL_FILE_HEADER_STRUCT.size, actual=len(data)
            )

        (
            signature, versionNeeded, flags, method, dosTime, dosDate,
            crc, compressedSize, uncompressedSize, nameLength, extraLength
        ) = LOCAL_FILE_HEADER_STRUCT.unpack_from(data)

        if signature != LOCAL_FILE_HEADER_SIGNATURE:
            raise LocalHeaderCorruptError(
                "Bad local file header signature", offset=offset,
                expected=LOCAL_FILE_HEADER_SIGNATURE, actual=signature
            )
        return cls(offset, flags, method, nameLength, extraLength)
