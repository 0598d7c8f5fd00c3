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

import dataclasses
import fnmatch

from typing import Iterable, Iterator, List

from partialzip.Kernel import getLogger
from partialzip.Source import RangeSource
from partialzip.Scanner import DirectoryLocation
from partialzip.Codecs import DecompressorRegistry
from partialzip.Errors import EntryNotFoundError, AmbiguousSelectionError
from partialzip.Records import EntryDescriptor, decodeCentralDirHeader

logger = getLogger(__name__)


class DirectoryParser:
    """Fetches the central directory in one range request and decodes every entry"""

    def __init__(self, source: RangeSource, registry: DecompressorRegistry = None):
        self.source = source
        self.registry = registry or DecompressorRegistry()

    def parse(self, location: DirectoryLocation) -> 'EntryIndex':
        data = self.source.fetch(location.start, location.end)
        logger.debug(f"Central directory: {location.entryCount} entries in {location.size} bytes at {location.start}")
        return EntryIndex(self.iterEntries(data, location))

    def iterEntries(self, data: bytes, location: DirectoryLocation) -> Iterator[EntryDescriptor]:
        pos = 0
        for index in range(location.entryCount):
            entry, pos = decodeCentralDirHeader(data, pos, location.start, index)
            yield self._markSupport(entry)

        if pos != len(data):
            logger.debug(f"{len(data) - pos} trailing bytes after the last central directory entry")

    def _markSupport(self, entry: EntryDescriptor) -> EntryDescriptor:
        if entry.isEncrypted:
            reason = 'encrypted'
        elif entry.hasDataDescriptor:
            reason = 'sizes in data descriptor'
        elif not self.registry.isSupported(entry.method):
            reason = f'unsupported compression method {entry.methodName}'
        else:
            return entry

        logger.warning(f"{entry.filename}: {reason}, entry is listed but cannot be extracted")
        return dataclasses.replace(entry, supported=False, unsupportedReason=reason)


class EntryIndex:
    """
    Immutable, ordered view of the central directory.

    Queries accept str or bytes. A str is encoded with each entry's own name
    encoding (UTF-8 or CP437) and compared byte for byte, case-sensitive.
    """

    GLOB_CHARACTERS = '*?['

    def __init__(self, entries: Iterable[EntryDescriptor]):
        self._entries = tuple(entries)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    @property
    def entries(self) -> List[EntryDescriptor]:
        return list(self._entries)

    def find(self, name) -> List[EntryDescriptor]:
        """All entries named exactly name"""
        return [entry for entry in self._entries if entry.matchesName(name)]

    def search(self, text) -> List[EntryDescriptor]:
        return [entry for entry in self._entries if self._contains(entry, text)]

    def endswith(self, suffix) -> List[EntryDescriptor]:
        return [entry for entry in self._entries if self._endswith(entry, suffix)]

    def endswithPath(self, suffix) -> List[EntryDescriptor]:
        """Entries whose trailing path components equal suffix"""
        return [entry for entry in self._entries if self._endswithPath(entry, suffix)]

    def match(self, pattern) -> List[EntryDescriptor]:
        """Glob match over the whole name. '*' crosses '/' like fnmatch does."""
        return [entry for entry in self._entries if self._match(entry, pattern)]

    def select(self, nameOrPattern) -> EntryDescriptor:
        """
        Resolve a user query to exactly one entry.

        Exact name first; otherwise a glob if the query has glob characters,
        else a match on trailing path components (so "b.bin" finds "dir/b.bin"
        but not "dir/ab.bin").

        Raises:
            EntryNotFoundError: If nothing matches or the query is empty
            AmbiguousSelectionError: If more than one entry matches
        """
        if not nameOrPattern:
            raise EntryNotFoundError("Empty entry name")

        candidates = self.find(nameOrPattern)
        if not candidates:
            if self.isPattern(nameOrPattern):
                candidates = self.match(nameOrPattern)
            else:
                candidates = self.endswithPath(nameOrPattern)

        if not candidates:
            raise EntryNotFoundError(f"No entry matches {nameOrPattern!r}")

        if len(candidates) > 1:
            names = [entry.filename for entry in candidates]
            raise AmbiguousSelectionError(
                f"{nameOrPattern!r} matches {len(candidates)} entries: {', '.join(names[:10])}"
                + (', ...' if len(names) > 10 else ''),
                candidates=candidates
            )

        return candidates[0]

    @classmethod
    def isPattern(cls, query) -> bool:
        if isinstance(query, (bytes, bytearray)):
            query = bytes(query).decode('latin-1')
        return any(c in query for c in cls.GLOB_CHARACTERS)

    @staticmethod
    def _contains(entry, text):
        encoded = entry.encodeQuery(text)
        return encoded is not None and encoded in entry.name

    @staticmethod
    def _endswith(entry, suffix):
        encoded = entry.encodeQuery(suffix)
        return encoded is not None and entry.name.endswith(encoded)

    @staticmethod
    def _endswithPath(entry, suffix):
        encoded = entry.encodeQuery(suffix)
        if not encoded:
            return False
        return entry.name == encoded or entry.name.endswith(b'/' + encoded)

    @staticmethod
    def _match(entry, pattern):
        encoded = entry.encodeQuery(pattern)
        return encoded is not None and fnmatch.fnmatchcase(entry.name, encoded)
