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

from dataclasses import dataclass
from typing import Iterator, List

from partialzip.Kernel import getLogger
from partialzip.Source import RangeSource
from partialzip.Scanner import TailScanner, DirectoryLocation
from partialzip.Directory import DirectoryParser, EntryIndex
from partialzip.Extractor import Extractor, ResolvedPayloadSpan
from partialzip.Codecs import DecompressorRegistry
from partialzip.Progress import Progress
from partialzip.Records import EntryDescriptor
from partialzip.Utils import defaultFileMode

logger = getLogger(__name__)


@dataclass(frozen=True)
class EntryInfo:
    name: str
    compressedSize: int
    uncompressedSize: int
    method: str
    supported: bool

    @classmethod
    def fromEntry(cls, entry: EntryDescriptor) -> 'EntryInfo':
        return cls(entry.filename, entry.compressedSize, entry.uncompressedSize, entry.methodName, entry.supported)


class RemoteArchive:
    """
    A zip archive behind a RangeSource.

    The central directory is located and parsed on first use and kept for the
    lifetime of the instance; entry payloads are never cached.

    Usage:
        with RemoteArchive.open('https://example.com/big.zip') as archive:
            for info in archive.listEntries():
                print(info.name)
            data = archive.extract('README.md')
    """

    def __init__(self, source: RangeSource, registry: DecompressorRegistry = None, chunkSize: int = None):
        self.source = source
        self.registry = registry or DecompressorRegistry()
        self.chunkSize = chunkSize
        self._location = None
        self._index = None
        self._extractor = None
        self._loadLock = threading.Lock()

    @classmethod
    def open(cls, location, registry: DecompressorRegistry = None, chunkSize: int = None, **kwargs) -> 'RemoteArchive':
        """
        Args:
            location: http(s) URL, local path or the archive bytes
            kwargs: RangeSource options (cancelEvent, session, timeout, requireRange)
        """
        return cls(RangeSource.build(location, **kwargs), registry=registry, chunkSize=chunkSize)

    def __enter__(self):
        return self

    def __exit__(self, excType, exc, tb):
        self.close()

    def __repr__(self):
        return f'RemoteArchive({self.source.name!r})'

    def close(self):
        self.source.close()

    @property
    def length(self) -> int:
        return self.source.length()

    def load(self) -> 'RemoteArchive':
        if self._index is None:
            with self._loadLock:
                if self._index is None:
                    location = TailScanner(self.source).scan()
                    index = DirectoryParser(self.source, self.registry).parse(location)
                    self._extractor = Extractor(
                        self.source, self.registry, prefixLength=location.prefixLength, chunkSize=self.chunkSize
                    )
                    self._location = location
                    self._index = index
                    logger.debug(f"{self.source.name}: {len(index)} entries")
        return self

    @property
    def location(self) -> DirectoryLocation:
        return self.load()._location

    @property
    def index(self) -> EntryIndex:
        return self.load()._index

    @property
    def comment(self) -> bytes:
        return self.location.eocd.comment

    def listEntries(self, pattern=None) -> List[EntryInfo]:
        """
        Entries in directory order, including unsupported ones.

        Args:
            pattern: Optional filter; a glob if it has glob characters, a substring otherwise
        """
        if pattern is None:
            entries = self.index.entries
        elif EntryIndex.isPattern(pattern):
            entries = self.index.match(pattern)
        else:
            entries = self.index.search(pattern)
        return [EntryInfo.fromEntry(entry) for entry in entries]

    def select(self, nameOrPattern) -> EntryDescriptor:
        return self.index.select(nameOrPattern)

    def locate(self, nameOrPattern) -> ResolvedPayloadSpan:
        entry = self.select(nameOrPattern)
        self._extractor.checkSupported(entry)
        return self._extractor.locator.locate(entry)

    def extract(self, nameOrPattern) -> bytes:
        entry = self.select(nameOrPattern)
        return self._extractor.extract(entry)

    def iterChunks(self, nameOrPattern, chunkSize: int = None) -> Iterator[bytes]:
        entry = self.select(nameOrPattern)
        return self._extractor.iterChunks(entry, chunkSize)

    def extractTo(self, nameOrPattern, path: str = None, chunkSize: int = None, progress: Progress = None) -> str:
        """
        Stream one entry to disk.

        The data goes to a temporary file next to the target, which replaces the
        target only after the CRC has been verified.

        Args:
            nameOrPattern: Entry selector, see EntryIndex.select()
            path: Output file or existing directory. Defaults to the entry's base name in the current directory.
            progress: Optional Progress, advanced by every decompressed chunk written

        Returns:
            str: Path written
        """
        entry = self.select(nameOrPattern)
        baseName = os.path.basename(entry.filename.rstrip('/')) or 'entry'

        if path is None:
            path = baseName
        elif os.path.isdir(path):
            path = os.path.join(path, baseName)

        if entry.isDir:
            os.makedirs(path, exist_ok=True)
            return path

        chunks = self._extractor.iterChunks(entry, chunkSize)

        directory = os.path.dirname(os.path.abspath(path))
        fd, tempPath = tempfile.mkstemp(prefix='.partialzip-', suffix='.part', dir=directory)
        try:
            with os.fdopen(fd, 'wb') as f:
                for chunk in chunks:
                    f.write(chunk)
                    if progress is not None:
                        progress.advance(len(chunk))
            # mkstemp creates 0600 files
            os.chmod(tempPath, defaultFileMode())
            os.replace(tempPath, path)
        except BaseException:
            if os.path.exists(tempPath):
                os.remove(tempPath)
            raise

        logger.debug(f"{entry.filename}: written to {path}")
        return path


def listEntries(archive: RemoteArchive) -> List[EntryInfo]:
    return archive.listEntries()


def extract(archive: RemoteArchive, nameOrPattern) -> bytes:
    return archive.extract(nameOrPattern)
