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

import bz2
import lzma
import struct
import zlib

from typing import Callable, Dict, Iterator

import pyzstd

from partialzip.Records import CompressionMethod, EntryDescriptor, LZMA_EOS_FLAG

# Exceptions the decompressors raise on malformed input
DECOMPRESSION_ERRORS = (zlib.error, lzma.LZMAError, pyzstd.ZstdError, OSError, EOFError, ValueError)


class Decompressor:
    """
    Incremental decompressor for one entry.

    feed() takes the next slice of compressed bytes and yields output pieces of
    at most maxOutput bytes, so memory stays bounded whatever the ratio.
    """

    def __init__(self, entry: EntryDescriptor):
        self.entry = entry

    def feed(self, data: bytes, maxOutput: int) -> Iterator[bytes]:
        raise NotImplementedError

    @property
    def finished(self) -> bool:
        """The compressed stream has reached its end"""
        raise NotImplementedError

    @property
    def unusedData(self) -> bytes:
        """Compressed bytes fed after the end of the stream"""
        return b''


class StoredDecompressor(Decompressor):

    def __init__(self, entry):
        super().__init__(entry)
        self._remaining = entry.uncompressedSize
        self._unused = b''

    def feed(self, data, maxOutput):
        if len(data) > self._remaining:
            self._unused += data[self._remaining:]
            data = data[:self._remaining]
        self._remaining -= len(data)

        for pos in range(0, len(data), maxOutput):
            yield data[pos:pos + maxOutput]

    @property
    def finished(self):
        return self._remaining == 0

    @property
    def unusedData(self):
        return self._unused


class DeflateDecompressor(Decompressor):
    """Raw deflate (no zlib header), as stored in zip members"""

    def __init__(self, entry):
        super().__init__(entry)
        self._decompressor = zlib.decompressobj(-zlib.MAX_WBITS)

    def feed(self, data, maxOutput):
        while not self._decompressor.eof:
            chunk = self._decompressor.decompress(data, maxOutput)
            data = self._decompressor.unconsumed_tail
            if chunk:
                yield chunk
            # A full buffer may leave output pending inside zlib even with no input left
            if not data and len(chunk) < maxOutput:
                break

    @property
    def finished(self):
        return self._decompressor.eof

    @property
    def unusedData(self):
        return self._decompressor.unused_data


class BufferedDecompressor(Decompressor):
    """For bz2/lzma style objects that buffer input internally (needs_input)"""

    def _create(self):
        raise NotImplementedError

    def __init__(self, entry):
        super().__init__(entry)
        self._decompressor = self._create()

    def feed(self, data, maxOutput):
        if self._decompressor.eof:
            return
        chunk = self._decompressor.decompress(data, maxOutput)
        if chunk:
            yield chunk
        while not self._decompressor.eof and not self._decompressor.needs_input:
            chunk = self._decompressor.decompress(b'', maxOutput)
            if chunk:
                yield chunk

    @property
    def finished(self):
        return self._decompressor.eof

    @property
    def unusedData(self):
        return self._decompressor.unused_data


class Bzip2Decompressor(BufferedDecompressor):

    def _create(self):
        return bz2.BZ2Decompressor()


class ZstdDecompressor(BufferedDecompressor):
    """Zstandard frames (method 93)"""

    def _create(self):
        return pyzstd.ZstdDecompressor()


class LzmaDecompressor(Decompressor):
    """
    LZMA as written by PKZIP: a 4 byte header (version, properties size), the
    LZMA1 properties, then a raw LZMA1 stream. The stream only carries an end
    marker when flag bit 1 is set; without it the declared size ends it.
    """

    def __init__(self, entry):
        super().__init__(entry)
        self._header = b''
        self._decompressor = None
        self._produced = 0
        self._hasEndMarker = bool(entry.flags & LZMA_EOS_FLAG)

    def feed(self, data, maxOutput):
        if self._decompressor is None:
            self._header += data
            if len(self._header) < 4:
                return
            propertiesSize, = struct.unpack('<H', self._header[2:4])
            if len(self._header) < 4 + propertiesSize:
                return
            properties = self._header[4:4 + propertiesSize]
            self._decompressor = lzma.LZMADecompressor(lzma.FORMAT_RAW, filters=[
                lzma._decode_filter_properties(lzma.FILTER_LZMA1, properties)
            ])
            data = self._header[4 + propertiesSize:]
            self._header = b''

        if self._decompressor.eof:
            return
        chunk = self._decompressor.decompress(data, maxOutput)
        while True:
            if chunk:
                self._produced += len(chunk)
                yield chunk
            if self._decompressor.eof or self._decompressor.needs_input:
                break
            chunk = self._decompressor.decompress(b'', maxOutput)

    @property
    def finished(self):
        if self._decompressor is None:
            return False
        if self._decompressor.eof:
            return True
        return not self._hasEndMarker and self._produced >= self.entry.uncompressedSize

    @property
    def unusedData(self):
        return self._decompressor.unused_data if self._decompressor is not None else b''


class DecompressorRegistry:
    """
    Decompressors keyed by compression method.

    Adding a method is a register() call; the rest of the engine only asks
    isSupported() and create().
    """

    DEFAULT_FACTORIES = {
        CompressionMethod.STORED: StoredDecompressor,
        CompressionMethod.DEFLATED: DeflateDecompressor,
        CompressionMethod.BZIP2: Bzip2Decompressor,
        CompressionMethod.LZMA: LzmaDecompressor,
        CompressionMethod.ZSTD: ZstdDecompressor,
    }

    def __init__(self, factories: Dict[int, Callable[[EntryDescriptor], Decompressor]] = None):
        self._factories = dict(self.DEFAULT_FACTORIES if factories is None else factories)

    def register(self, method: int, factory: Callable[[EntryDescriptor], Decompressor]):
        self._factories[int(method)] = factory

    def isSupported(self, method: int) -> bool:
        return method in self._factories

    def create(self, entry: EntryDescriptor) -> Decompressor:
        try:
            factory = self._factories[entry.method]
        except KeyError:
            raise KeyError(f"No decompressor for {entry.methodName}") from None
        return factory(entry)
