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


class PartialZipError(Exception):
    """Base exception for everything the engine raises"""

    def __init__(self, message, offset=None, expected=None, actual=None):
        super().__init__(message)
        self.offset = offset
        self.expected = expected
        self.actual = actual

    def __str__(self):
        message = str(self.args[0]) if self.args else ''
        details = []
        if self.offset is not None:
            details.append(f'offset={self.offset}')
        if self.expected is not None:
            details.append(f'expected={self.expected!r}')
        if self.actual is not None:
            details.append(f'actual={self.actual!r}')
        return f"{message} ({', '.join(details)})" if details else message


# =============================================================================
# Range source errors
# =============================================================================


class TransportError(PartialZipError):
    """Network level failure, possibly transient. Retrying is up to the caller."""

    def __init__(self, message, statusCode=None, **kwargs):
        super().__init__(message, **kwargs)
        self.statusCode = statusCode


class RangeUnsupportedError(PartialZipError):
    """The server cannot serve partial content, so partial extraction is impossible"""
    pass


class SizeUnknownError(PartialZipError):
    """The resource does not report a definite length"""
    pass


class OutOfBoundsError(PartialZipError):
    """Requested range lies outside the resource"""
    pass


class CancelledError(PartialZipError):
    """The caller cancelled an in-flight fetch"""
    pass


class InvalidURLError(PartialZipError, ValueError):
    pass


# =============================================================================
# Container errors (malformed archive, never retried)
# =============================================================================


class EocdNotFoundError(PartialZipError):
    """No End Of Central Directory record: not a zip, or truncated"""
    pass


class CorruptZip64Error(PartialZipError):
    """A sentinel field demands a Zip64 record that is missing or broken"""
    pass


class DirectoryCorruptError(PartialZipError):
    pass


class LocalHeaderCorruptError(PartialZipError):
    pass


# =============================================================================
# Entry errors
# =============================================================================


class UnsupportedEntryError(PartialZipError):
    """The entry is listed but cannot be extracted partially (encrypted, data descriptor, ...)"""
    pass


class UnsupportedMethodError(UnsupportedEntryError):
    """No decompressor is available for the entry's compression method"""
    pass


class IntegrityError(PartialZipError):
    """Checksum or size mismatch after decompression"""
    pass


# =============================================================================
# Selection errors (caller input)
# =============================================================================


class EntryNotFoundError(PartialZipError, KeyError):
    pass


class AmbiguousSelectionError(PartialZipError):

    def __init__(self, message, candidates=(), **kwargs):
        super().__init__(message, **kwargs)
        self.candidates = list(candidates)
