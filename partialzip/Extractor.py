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

import zlib

from dataclasses import dataclass
from typing import Iterable, Iterator

from partialzip.Kernel import getLogger, ArchiveEvent
from partialzip.Settings import SettingsGetter
from partialzip.Source import RangeSource
from partialzip.Codecs import DecompressorRegistry, DECOMPRESSION_ERRORS
from partialzip.Errors import (
    LocalHeaderCorruptError, UnsupportedEntryError, UnsupportedMethodError, IntegrityError
)
from partialzip.Records import CompressionMethod, EntryDescriptor, LocalFileHeader, LOCAL_FILE_HEADER_STRUCT

logger = getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPayloadSpan:
    """Absolute position of an entry's compressed bytes in the resource"""

    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


class PayloadLocator:
    """
    Reads an entry's local file header to find where its data starts.

    The central directory offset only points at the local header; the local
    extra field may differ in length from the central one, so the data offset
    must come from the local header itself.
    """

    def __init__(self, source: RangeSource, prefixLength: int = 0):
        self.source = source
        self.prefixLength = prefixLength

    def locate(self, entry: EntryDescriptor) -> ResolvedPayloadSpan:
        length = self.source.length()
        offset = entry.localHeaderOffset + self.prefixLength

        if offset + LOCAL_FILE_HEADER_STRUCT.size > length:
            raise LocalHeaderCorruptError(
                f"{entry.filename}: local file header lies past the end of the resource",
                offset=offset, expected=offset + LOCAL_FILE_HEADER_STRUCT.size, actual=length
            )

        # Usually the local extra field matches the central one, one fetch covers header and name
        window = min(offset + LOCAL_FILE_HEADER_STRUCT.size + len(entry.name) + len(entry.extra), length)
        data = self.source.fetch(offset, window)
        header = LocalFileHeader.decode(data, offset)

        nameEnd = offset + LOCAL_FILE_HEADER_STRUCT.size + header.nameLength
        if nameEnd > length:
            raise LocalHeaderCorruptError(
                f"{entry.filename}: local file name runs past the end of the resource",
                offset=offset, expected=nameEnd, actual=length
            )
        if nameEnd > window:
            data += self.source.fetch(window, nameEnd)

        localName = data[LOCAL_FILE_HEADER_STRUCT.size:LOCAL_FILE_HEADER_STRUCT.size + header.nameLength]
        if localName != entry.name:
            raise LocalHeaderCorruptError(
                "Local file name differs from the central directory", offset=offset,
                expected=entry.name, actual=localName
            )

        span = ResolvedPayloadSpan(header.dataOffset, entry.compressedSize)
        if span.end > length:
            raise LocalHeaderCorruptError(
                f"{entry.filename}: compressed data runs past the end of the resource",
                offset=span.start, expected=span.end, actual=length
            )

        logger.debug(
            f"{entry.filename}: local header at {offset}, data [{span.start}, {span.end}) "
            f"(local extra {header.extraLength} bytes, central extra {len(entry.extra)} bytes)"
        )
        return span


class Extractor:
    """
    Fetches and decompresses one entry at a time, verifying size and CRC-32.

    Nothing is fetched for an entry that cannot be extracted. Every call
    resolves the payload span again; nothing is cached between calls.
    """

    def __init__(
        self,
        source: RangeSource,
        registry: DecompressorRegistry = None,
        prefixLength: int = 0,
        chunkSize: int = None,
    ):
        self.source = source
        self.registry = registry or DecompressorRegistry()
        self.locator = PayloadLocator(source, prefixLength)
        self.chunkSize = SettingsGetter.getInstance().chunkSize if chunkSize is None else chunkSize

    def checkSupported(self, entry: EntryDescriptor):
        if not self.registry.isSupported(entry.method):
            raise UnsupportedMethodError(
                f"{entry.filename}: compression method {entry.methodName} is not supported",
                actual=entry.method
            )
        if not entry.supported:
            raise UnsupportedEntryError(f"{entry.filename}: {entry.unsupportedReason}")

        if entry.method == CompressionMethod.STORED and entry.compressedSize != entry.uncompressedSize:
            raise IntegrityError(
                f"{entry.filename}: stored entry with different compressed and uncompressed sizes",
                expected=entry.uncompressedSize, actual=entry.compressedSize
            )

    def extract(self, entry: EntryDescriptor) -> bytes:
        """Whole entry in memory; the payload is fetched with a single range request."""
        self.checkSupported(entry)
        span = self.locator.locate(entry)
        payload = self.source.fetch(span.start, span.end)
        return b''.join(self._decode(entry, span, [payload], max(entry.uncompressedSize, 1)))

    def iterChunks(self, entry: EntryDescriptor, chunkSize: int = None) -> Iterator[bytes]:
        """
        Decompressed entry as a lazy, forward-only sequence of chunks.

        Both fetches and output are bounded by chunkSize. Checks run before the
        first fetch; CRC and size are verified once the end has been reached,
        so a consumer that stops early gets no verification.
        """
        chunkSize = self.chunkSize if chunkSize is None else chunkSize
        if chunkSize <= 0:
            raise ValueError(f"chunkSize must be positive, got {chunkSize}")

        self.checkSupported(entry)
        span = self.locator.locate(entry)
        return self._decode(entry, span, self._iterPayload(span, chunkSize), chunkSize)

    def _iterPayload(self, span: ResolvedPayloadSpan, chunkSize: int) -> Iterator[bytes]:
        for start in range(span.start, span.end, chunkSize):
            yield self.source.fetch(start, min(start + chunkSize, span.end))

    def _decode(
        self, entry: EntryDescriptor, span: ResolvedPayloadSpan, payload: Iterable[bytes], maxOutput: int
    ) -> Iterator[bytes]:
        decompressor = self.registry.create(entry)
        consumed = 0
        produced = 0
        crc = 0

        for chunk in payload:
            if not chunk:
                continue
            if decompressor.finished:
                raise IntegrityError(
                    f"{entry.filename}: compressed stream ended before its declared size",
                    offset=span.start + consumed, expected=entry.compressedSize, actual=consumed
                )
            consumed += len(chunk)

            try:
                for piece in decompressor.feed(chunk, maxOutput):
                    produced += len(piece)
                    if produced > entry.uncompressedSize:
                        raise IntegrityError(
                            f"{entry.filename}: more output than the declared size",
                            expected=entry.uncompressedSize, actual=produced
                        )
                    crc = zlib.crc32(piece, crc)
                    yield piece
            except DECOMPRESSION_ERRORS as e:
                raise IntegrityError(
                    f"{entry.filename}: corrupt {entry.methodName} stream: {e}", offset=span.start
                ) from e

        if decompressor.unusedData:
            raise IntegrityError(
                f"{entry.filename}: compressed stream ended before its declared size",
                offset=span.start, expected=entry.compressedSize,
                actual=entry.compressedSize - len(decompressor.unusedData)
            )
        if not decompressor.finished:
            raise IntegrityError(
                f"{entry.filename}: compressed stream needs more than its declared size",
                offset=span.start, expected=entry.compressedSize
            )
        if produced != entry.uncompressedSize:
            raise IntegrityError(
                f"{entry.filename}: size mismatch", expected=entry.uncompressedSize, actual=produced
            )
        if crc != entry.crc:
            raise IntegrityError(
                f"{entry.filename}: CRC-32 mismatch", expected=f'{entry.crc:08x}', actual=f'{crc:08x}'
            )

        logger.debug(f"{entry.filename}: {consumed} compressed bytes -> {produced} bytes, CRC-32 {crc:08x}")
        ArchiveEvent.entryExtract.trigger(entry=entry, size=produced)
