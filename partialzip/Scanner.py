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

from dataclasses import dataclass
from typing import Optional, Tuple

from partialzip.Kernel import getLogger
from partialzip.Settings import SettingsGetter
from partialzip.Source import RangeSource
from partialzip.Errors import EocdNotFoundError, CorruptZip64Error, DirectoryCorruptError
from partialzip.Records import (
    END_OF_CENTRAL_DIR_SIGNATURE, END_OF_CENTRAL_DIR_STRUCT, ZIP64_LOCATOR_STRUCT, ZIP64_END_OF_CENTRAL_DIR_STRUCT,
    CENTRAL_DIR_STRUCT, ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE, ZIP64_LIMIT16, ZIP64_LIMIT32, MAX_COMMENT_LENGTH,
    EndOfDirectoryRecord, Zip64Locator, Zip64EndOfDirectoryRecord, resolveSentinel,
)

logger = getLogger(__name__)


@dataclass(frozen=True)
class DirectoryLocation:
    """
    Where the central directory is, in archive coordinates.

    offset is the value recorded in the archive; prefixLength is the number of
    bytes found in front of the archive (self-extracting stubs) and must be
    added to it, and to every local header offset, to get resource positions.
    """

    offset: int
    size: int
    entryCount: int
    prefixLength: int = 0
    eocd: Optional[EndOfDirectoryRecord] = None
    zip64: Optional[Zip64EndOfDirectoryRecord] = None

    @property
    def start(self) -> int:
        return self.offset + self.prefixLength

    @property
    def end(self) -> int:
        return self.start + self.size


class TailBuffer:
    """The bytes fetched from the end of the resource so far"""

    def __init__(self, source: RangeSource, start: int, data: bytes):
        self.source = source
        self.start = start
        self.data = data

    @property
    def end(self) -> int:
        return self.start + len(self.data)

    def extend(self, newStart: int):
        """Fetch only [newStart, start) and prepend it"""
        self.data = self.source.fetch(newStart, self.start) + self.data
        self.start = newStart

    def read(self, offset: int, size: int) -> bytes:
        """Bytes [offset, offset + size), from the buffer when covered, otherwise one fetch"""
        if self.start <= offset and offset + size <= self.end:
            pos = offset - self.start
            return self.data[pos:pos + size]
        return self.source.fetch(offset, offset + size)


class TailScanner:
    """
    Finds the central directory from the end of the resource.

    Fetches a tail window, scans it backward for the End Of Central Directory
    signature and doubles the window (fetching only the new slice) until the
    record is found or the whole resource has been covered.
    """

    def __init__(self, source: RangeSource, windowSize: int = None):
        self.source = source
        self.windowSize = SettingsGetter.getInstance().tailWindowSize if windowSize is None else windowSize

    def scan(self) -> DirectoryLocation:
        length = self.source.length()
        if length < END_OF_CENTRAL_DIR_STRUCT.size:
            raise EocdNotFoundError(
                f"{self.source.name} is too small to be a zip archive",
                expected=END_OF_CENTRAL_DIR_STRUCT.size, actual=length
            )

        window = min(self.windowSize, length)
        tail = TailBuffer(self.source, length - window, self.source.fetch(length - window, length))

        # No EOCD with a comment ending at EOF can start before this
        earliestRecord = max(0, length - END_OF_CENTRAL_DIR_STRUCT.size - MAX_COMMENT_LENGTH)

        while True:
            pos, exact = self._findEndOfDirectory(tail.data, tail.start, length)
            if pos is not None and (exact or tail.start <= earliestRecord):
                break

            if tail.start == 0:
                raise EocdNotFoundError(
                    f"No End Of Central Directory in {self.source.name}, not a zip archive or truncated",
                    expected=END_OF_CENTRAL_DIR_SIGNATURE, actual=length
                )

            window = min(window * 2, length)
            logger.debug(f"End Of Central Directory not in the last {tail.end - tail.start} bytes, growing to {window}")
            tail.extend(length - window)

        eocd = EndOfDirectoryRecord.decode(tail.data, pos, tail.start + pos)
        logger.debug(
            f"End Of Central Directory at {eocd.offset}: {eocd.entryCount} entries, "
            f"directory {eocd.directorySize} bytes at {eocd.directoryOffset}"
        )

        return self._resolve(eocd, tail, length)

    @staticmethod
    def _findEndOfDirectory(data: bytes, dataStart: int, length: int) -> Tuple[Optional[int], bool]:
        """
        Position of the EOCD within data, scanning backward.

        A candidate needs its full fixed part in data and a comment that fits in
        the resource. The first one whose comment ends exactly at the end of the
        resource wins. Otherwise the candidate nearest the end that fits is
        returned as a fallback (trailing garbage), the caller only trusts it once
        the window covers every position a real record could start at.

        Returns:
            tuple: (position or None, whether the comment ends at the end of the resource)
        """
        fallback = None

        pos = data.rfind(END_OF_CENTRAL_DIR_SIGNATURE)
        while pos != -1:
            if pos + END_OF_CENTRAL_DIR_STRUCT.size <= len(data):
                commentLength, = struct.unpack_from('<H', data, pos + END_OF_CENTRAL_DIR_STRUCT.size - 2)
                recordEnd = dataStart + pos + END_OF_CENTRAL_DIR_STRUCT.size + commentLength
                if recordEnd == length:
                    return pos, True
                if recordEnd < length and fallback is None:
                    fallback = pos
            pos = data.rfind(END_OF_CENTRAL_DIR_SIGNATURE, 0, pos)

        return fallback, False

    def _resolve(self, eocd: EndOfDirectoryRecord, tail: TailBuffer, length: int) -> DirectoryLocation:
        zip64 = None

        # Writers may emit the Zip64 records even when every EOCD field fits
        if self._hasZip64Locator(eocd, tail):
            zip64 = self._readZip64(eocd, tail, length)

        def wide(fieldName):
            nonlocal zip64
            if zip64 is None:
                zip64 = self._readZip64(eocd, tail, length)
            return getattr(zip64, fieldName)

        entryCount = resolveSentinel(eocd.entryCount, ZIP64_LIMIT16, lambda: wide('entryCount'))
        directorySize = resolveSentinel(eocd.directorySize, ZIP64_LIMIT32, lambda: wide('directorySize'))
        directoryOffset = resolveSentinel(eocd.directoryOffset, ZIP64_LIMIT32, lambda: wide('directoryOffset'))

        if zip64 is not None:
            # Once read, every Zip64 field is authoritative
            entryCount, directorySize, directoryOffset = zip64.entryCount, zip64.directorySize, zip64.directoryOffset
            directoryEnd = zip64.offset
        else:
            directoryEnd = eocd.offset

        prefixLength = directoryEnd - directorySize - directoryOffset
        if prefixLength < 0:
            raise DirectoryCorruptError(
                "Central directory overlaps the End Of Central Directory", offset=directoryOffset,
                expected=directoryEnd, actual=directoryOffset + directorySize
            )
        if prefixLength:
            logger.debug(f"{prefixLength} bytes of data before the archive")

        if entryCount * CENTRAL_DIR_STRUCT.size > directorySize:
            raise DirectoryCorruptError(
                f"{entryCount} entries cannot fit in a {directorySize} byte directory",
                offset=directoryOffset + prefixLength, expected=entryCount * CENTRAL_DIR_STRUCT.size,
                actual=directorySize
            )

        location = DirectoryLocation(
            offset=directoryOffset,
            size=directorySize,
            entryCount=entryCount,
            prefixLength=prefixLength,
            eocd=eocd,
            zip64=zip64,
        )
        if location.end > length:
            raise DirectoryCorruptError(
                "Central directory extends past the end of the resource", offset=location.start,
                expected=length, actual=location.end
            )
        return location

    @staticmethod
    def _hasZip64Locator(eocd: EndOfDirectoryRecord, tail: TailBuffer) -> bool:
        locatorOffset = eocd.offset - ZIP64_LOCATOR_STRUCT.size
        if locatorOffset < 0:
            return False
        signatureSize = len(ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE)
        return tail.read(locatorOffset, signatureSize) == ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE

    def _readZip64(self, eocd: EndOfDirectoryRecord, tail: TailBuffer, length: int) -> Zip64EndOfDirectoryRecord:
        locatorOffset = eocd.offset - ZIP64_LOCATOR_STRUCT.size
        if locatorOffset < 0:
            raise CorruptZip64Error(
                "End Of Central Directory uses Zip64 sentinels but there is no room for a Zip64 locator",
                offset=eocd.offset
            )
        locator = Zip64Locator.decode(tail.read(locatorOffset, ZIP64_LOCATOR_STRUCT.size), locatorOffset)

        recordSize = ZIP64_END_OF_CENTRAL_DIR_STRUCT.size
        # Where the record physically sits when the archive has been prepended to
        adjacentOffset = locatorOffset - recordSize

        candidates = [locator.recordOffset]
        if adjacentOffset >= 0 and adjacentOffset != locator.recordOffset:
            candidates.append(adjacentOffset)

        error = None
        for recordOffset in candidates:
            if recordOffset + recordSize > locatorOffset:
                error = CorruptZip64Error(
                    "Zip64 End Of Central Directory out of bounds", offset=recordOffset, expected=locatorOffset
                )
                continue
            try:
                record = Zip64EndOfDirectoryRecord.decode(tail.read(recordOffset, recordSize), recordOffset)
            except CorruptZip64Error as e:
                error = error or e
                continue

            logger.debug(
                f"Zip64 End Of Central Directory at {record.offset}: {record.entryCount} entries, "
                f"directory {record.directorySize} bytes at {record.directoryOffset}"
            )
            return record

        raise error
