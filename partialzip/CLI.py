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

import argparse
import json
import os
import logging
import logging.config
import platform

from partialzip.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, getLogger, configureGlobalLogLevel, StorageLocator
from partialzip.Settings import SettingsGetter
from partialzip.Utils import flushPrint, getEnv

logger = getLogger(__name__)


def loadEnvFile():
    """
    Load environment variables from .env file using StorageLocator.
    Only sets variables that are not already defined in os.environ.
    """
    envFilePath = StorageLocator.getInstance().findConfig('.env')

    if not os.path.exists(envFilePath):
        return

    try:
        loadedCount = 0

        with open(envFilePath, 'r', encoding='utf-8') as f:
            for lineNum, line in enumerate(f, 1):
                line = line.strip()

                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    logger.warning(f'.env line {lineNum}: Invalid format (missing =): {line}')
                    continue

                key, _, value = line.partition('=')
                key = key.strip()
                value = value.strip()

                if not key:
                    logger.warning(f'.env line {lineNum}: Empty key')
                    continue

                if (value.startswith('"') and value.endswith('"')) or \
                   (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]

                # Environment takes precedence
                if key not in os.environ:
                    os.environ[key] = value
                    loadedCount += 1
                else:
                    logger.debug(f'.env: Skipped {key} (already set in environment)')

        logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')

    except OSError as e:
        logger.error(f'Unable to read .env file {envFilePath}: {e}')


def configureLogging(logLevel):
    """Configure logging level from --log-level, falling back to PARTIALZIP_LOGGING_LEVEL

    Both can be a level name (DEBUG, INFO, WARNING, ERROR) or a path to a
    logging configuration JSON file (logging.config.dictConfig format).
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('PARTIALZIP_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, OSError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()

    return logLevel


def showVersion():
    flushPrint(f"partialzip v{PUBLIC_VERSION}")
    flushPrint("")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")
    flushPrint(f"Support: {SettingsGetter.getInstance().getSupportURL()}")


def configureCLIParser():
    """Build the parser. Global options live in a parent parser shared by every subcommand.

    Returns:
        tuple: (parser, globalsParent)
    """

    def validateLogLevel(logLevel):
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        validLevels = list(LOG_LEVEL_MAPPING)
        if logLevel.upper() not in validLevels:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
            )
        return logLevel.upper()

    def validateTimeout(valueStr):
        try:
            value = float(valueStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid timeout value: {valueStr}")
        if value <= 0:
            raise argparse.ArgumentTypeError(f"Timeout {value} must be positive")
        return value

    # === 1) Global parameters in a parent parser ===
    globalsParent = argparse.ArgumentParser(add_help=False, exit_on_error=False)
    globalsParent.add_argument("--version", action="store_true", help="Show version information")
    globalsParent.add_argument(
        "--log-level",
        type=validateLogLevel,
        help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file",
        metavar="LEVEL_OR_FILE",
        dest="logLevel"
    )
    globalsParent.add_argument(
        "--timeout",
        type=validateTimeout,
        help="Seconds to wait for the server on each request (default: %(default)s)",
        metavar="SECONDS",
        default=None,
        dest="timeout"
    )
    globalsParent.add_argument(
        "--no-range-check",
        action="store_false",
        default=None,
        help="Skip the initial one byte range check",
        dest="requireRange"
    )

    # === 2) Main parser + subparsers; all inherit from globalsParent ===
    parser = argparse.ArgumentParser(
        prog='partialzip',
        description="Download single files from online zip archives, fetching only the bytes needed.",
        parents=[globalsParent],
        exit_on_error=False,
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    listSubparser = subparsers.add_parser(
        'list', help='List the entries of a remote zip archive', parents=[globalsParent], exit_on_error=False
    )
    listSubparser.add_argument("url", metavar="URL", help="URL (or local path) of the zip archive")
    listSubparser.add_argument(
        "--filter", metavar="TEXT", help="Only list entries containing TEXT, or matching it as a glob"
    )
    listSubparser.add_argument("--json", action="store_true", help="Print entries as JSON")

    downloadSubparser = subparsers.add_parser(
        'download', help='Download one entry from a remote zip archive', parents=[globalsParent], exit_on_error=False
    )
    downloadSubparser.add_argument("url", metavar="URL", help="URL (or local path) of the zip archive")
    downloadSubparser.add_argument(
        "name", metavar="NAME", help="Entry name, unique suffix, or glob matching exactly one entry"
    )
    outputGroup = downloadSubparser.add_mutually_exclusive_group()
    outputGroup.add_argument(
        "--output", "-o", metavar="PATH", help="Output file or directory (default: entry base name)"
    )
    outputGroup.add_argument("--stdout", action="store_true", help="Write the entry to standard output")

    return parser, globalsParent
