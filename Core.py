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

import sys
import os
import json
import argparse
import signal
import platform

from partialzip.Kernel import ArchiveEvent, getLogger
from partialzip.Settings import SettingsGetter
from partialzip.CLI import configureCLIParser, configureLogging, showVersion, loadEnvFile
from partialzip.Utils import flushPrint, formatSize, sendException
from partialzip.Errors import PartialZipError, AmbiguousSelectionError
from partialzip.Archive import RemoteArchive
from partialzip.Progress import Progress

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second Ctrl+C - force immediate exit without cleanup messages
            os._exit(0)
        else:
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)


def setupSettings(globalArgs):
    loadEnvFile()

    SettingsGetter.resetInstance()
    return SettingsGetter(
        platform=platform.system(),
        timeout=globalArgs.timeout,
        requireRange=globalArgs.requireRange,
    )


class TransferTracker:
    """Counts range requests and bytes actually transferred, via ArchiveEvent.rangeFetch"""

    def __init__(self):
        self.requests = 0
        self.bytes = 0

    def onRangeFetch(self, start, end, **kwargs):
        self.requests += 1
        self.bytes += end - start

    def __enter__(self):
        ArchiveEvent.rangeFetch.subscribe(self.onRangeFetch)
        return self

    def __exit__(self, excType, exc, tb):
        ArchiveEvent.rangeFetch.unsubscribe(self.onRangeFetch)

    def summary(self, archive):
        return (
            f"Fetched {formatSize(self.bytes)} in {self.requests} range requests "
            f"(archive is {formatSize(archive.length)})"
        )


def processList(args):
    """
    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    try:
        with RemoteArchive.open(args.url) as archive, TransferTracker() as tracker:
            entries = archive.listEntries(args.filter)

            if args.json:
                flushPrint(json.dumps([
                    {
                        'name': info.name,
                        'compressedSize': info.compressedSize,
                        'uncompressedSize': info.uncompressedSize,
                        'method': info.method,
                        'supported': info.supported,
                    } for info in entries
                ], indent=2, ensure_ascii=False))
            else:
                for info in entries:
                    mark = ' ' if info.supported else '!'
                    flushPrint(f"{mark} {info.uncompressedSize:>12} {info.compressedSize:>12} {info.method:<9} {info.name}")

            logger.info(tracker.summary(archive))
        return 0

    except (PartialZipError, OSError) as e:
        sendException(logger, e, errorPrefix="Listing failed")
        return 1


def processDownload(args):
    """
    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    try:
        with RemoteArchive.open(args.url) as archive, TransferTracker() as tracker:
            if args.stdout:
                out = sys.stdout.buffer
                for chunk in archive.iterChunks(args.name):
                    out.write(chunk)
                out.flush()
            else:
                entry = archive.select(args.name)
                with Progress(entry.uncompressedSize, description=entry.filename, useBar=sys.stderr.isatty()) as progress:
                    outputPath = archive.extractTo(args.name, args.output, progress=progress)
                flushPrint(f"Downloaded: {outputPath}")

            logger.info(tracker.summary(archive))
        return 0

    except AmbiguousSelectionError as e:
        names = '\n'.join(f'  {entry.filename}' for entry in e.candidates)
        sendException(logger, e, action=f"Candidates:\n{names}", errorPrefix="Download failed")
        return 1
    except (PartialZipError, OSError) as e:
        sendException(logger, e, errorPrefix="Download failed")
        return 1


def runCLIMain(argv=None):
    """Run the program in CLI mode using two-phase parsing"""
    parser, globalsParent = configureCLIParser()

    argv = sys.argv[1:] if argv is None else list(argv)

    if len(argv) == 0:
        parser.print_help()
        return 0

    # Phase 1: global args first, so --log-level and --version apply before anything else
    try:
        globalArgs, rest = globalsParent.parse_known_args(argv)
    except argparse.ArgumentError as e:
        parser.error(str(e))

    configureLogging(globalArgs.logLevel)

    if globalArgs.version:
        showVersion()
        return 0

    if not rest:
        parser.print_help()
        return 0

    # Phase 2: full parse with the subcommand
    try:
        args = parser.parse_args(argv)
    except argparse.ArgumentError as e:
        parser.error(str(e))

    if args.command is None:
        parser.print_help()
        return 0

    setupSettings(globalArgs)

    if args.command == 'list':
        return processList(args)

    return processDownload(args)


def main(argv=None):
    try:
        return runCLIMain(argv)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        return 0


if __name__ == '__main__':
    setupGracefulShutdown()
    try:
        exitCode = main()
        sys.exit(exitCode or 0)
    except Exception as e:
        sendException(logger, e)
        sys.exit(1)
