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
import json
import logging
import platform
import threading

# Error reporting stays off unless a SENTRY_DSN is configured explicitly
# (environment variable or .secret file). Nothing is sent by default.
import sentry_sdk

from pathlib import Path
from enum import Enum

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.2.5'

LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the application.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('PARTIALZIP_LOGGING_LEVEL'):
    _envLevel = LOG_LEVEL_MAPPING.get(os.getenv('PARTIALZIP_LOGGING_LEVEL').upper())
    if _envLevel is not None:
        configureGlobalLogLevel(_envLevel)


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration.

    Sentry is initialised once, and only when SecretGetter resolves a SENTRY_DSN.
    Without a DSN the SentryHandler is attached but inert.

    Args:
        name: Logger name
        version: Version string for logging context
    """
    try:
        if not sentry_sdk.get_client().is_active():
            sentryDsn = SecretGetter.getInstance().get('SENTRY_DSN')
            if sentryDsn:
                # Silence "sentry is attempting to send pending events..." on exit
                sentryAtexit.default_callback = lambda pending, timeout: None

                sentry_sdk.init(
                    dsn=sentryDsn,
                    release=version,
                    default_integrations=False,
                    integrations=[
                        LoggingIntegration(),
                        sentryAtexit.AtexitIntegration(),
                    ],
                )

        logger = logging.getLogger(name)

        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            formatter = logging.Formatter('%(asctime)s version[%(version)s] : %(message)s')

            syslog = SentryHandler()
            syslog.setFormatter(formatter)
            logger.addHandler(syslog)

        return logging.LoggerAdapter(logger, {'version': version or 'unknown'})

    except Exception as e:
        fallbackLogger = logging.getLogger(name)
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")
        return fallbackLogger


class Singleton:
    """
    Thread-safe singleton base class.
    Subclasses override initialize() instead of __init__, it runs once per class.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls not in cls._instances:
            with cls._lock:
                if cls not in cls._instances:
                    cls._instances[cls] = super().__new__(cls)
        return cls._instances[cls]

    def __init__(self, *args, **kwargs):
        if not hasattr(self, '_initialized'):
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            cls()
        return cls._instances[cls]

    @classmethod
    def resetInstance(cls):
        """Drop the cached instance. Test suites only."""
        with cls._lock:
            cls._instances.pop(cls, None)


class EventTiming(Enum):
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class EventService(Singleton):
    """
    Dispatches named events to subscribed observers using 'signalslot'.
    Each event owns a (before, after) pair of signals.
    """

    def initialize(self):
        self.signals = {}
        self._lock = threading.Lock()

    def _normalizeTiming(self, timing):
        if timing is None or isinstance(timing, EventTiming):
            return timing

        if isinstance(timing, str):
            try:
                return EventTiming(timing.upper())
            except ValueError:
                raise ValueError(f"Invalid timing value: '{timing}'. Must be 'BEFORE' or 'AFTER'.")

        raise ValueError(f"Timing must be EventTiming enum, string, or None. Got: {type(timing)}")

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        with self._lock:
            if self.isRegistered(event):
                return False
            self.signals[event] = (Signal(), Signal())
            return True

    def trigger(self, event, *args, **kwargs):
        """
        Emit an event. signalslot slots receive keyword arguments only.
        """
        timing = self._normalizeTiming(kwargs.pop('timing', None))

        signalObjects = self.signals.get(event)
        if not signalObjects:
            return

        beforeSignal, afterSignal = signalObjects

        if timing in (EventTiming.BEFORE, None):
            beforeSignal.emit(**kwargs)

        if timing in (EventTiming.AFTER, None):
            afterSignal.emit(**kwargs)

    def subscribe(self, event, observer, timing=EventTiming.AFTER):
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        timing = self._normalizeTiming(timing)
        if timing not in (EventTiming.BEFORE, EventTiming.AFTER):
            raise ValueError("Timing must be EventTiming.BEFORE or EventTiming.AFTER.")

        signalObject = self.signals[event][0 if timing == EventTiming.BEFORE else 1]
        if observer not in signalObject._slots:
            signalObject.connect(observer)

    def unsubscribe(self, event, observer, timing=None):
        if not self.isRegistered(event):
            return

        timings = [self._normalizeTiming(timing)] if timing else [EventTiming.BEFORE, EventTiming.AFTER]

        for t in timings:
            signalObject = self.signals[event][0 if t == EventTiming.BEFORE else 1]
            if observer in signalObject._slots:
                signalObject.disconnect(observer)


class Event:
    """Simple Event wrapper"""

    def __init__(self, key):
        self.key = key
        self.eventService = EventService.getInstance()

    def subscribe(self, observer, timing=EventTiming.AFTER):
        return self.eventService.subscribe(self.key, observer, timing=timing)

    def unsubscribe(self, observer, timing=None):
        return self.eventService.unsubscribe(self.key, observer, timing=timing)

    def trigger(self, *args, **kwargs):
        return self.eventService.trigger(self.key, *args, **kwargs)


class StorageLocator(Singleton):
    """
    Resolves where configuration files live.

    Search order: PARTIALZIP_STORAGE_LOCATION (if it is a directory) -> current
    directory -> ~/.partialzip -> platform config directory.
    """

    def initialize(self, appName='partialzip'):
        self.appName = appName
        self._homeDir = os.path.expanduser(f'~{os.path.sep}.{appName}')
        self._platformDir = self._getPlatformDir()

    def _getPlatformDir(self):
        system = platform.system()

        if system == 'Windows':
            appdata = os.getenv('APPDATA', os.path.expanduser('~'))
            return os.path.join(appdata, self.appName)
        elif system == 'Darwin':
            return os.path.expanduser(f'~/Library/Application Support/{self.appName}')
        else:
            return os.path.expanduser(f'~/.config/{self.appName}')

    def _getEnvStorageLocation(self):
        envStorageLocation = os.getenv('PARTIALZIP_STORAGE_LOCATION')
        if envStorageLocation and os.path.isdir(envStorageLocation):
            return envStorageLocation
        return None

    def findConfig(self, filename):
        """
        Find a configuration file.

        Returns:
            Path to the file (may not exist)
        """
        envStorageLocation = self._getEnvStorageLocation()
        if envStorageLocation:
            return os.path.join(envStorageLocation, filename)

        candidates = [
            os.path.abspath(filename),
            os.path.join(self._homeDir, filename),
            os.path.join(self._platformDir, filename),
        ]
        for path in candidates:
            if os.path.exists(path):
                return path

        return candidates[1]


class SecretGetter(Singleton):
    """
    Looks up secrets in environment variables first, then in the .secret JSON file.
    """

    DEFAULT_SECRET_FILE = '.secret'

    def initialize(self, secretFileName=DEFAULT_SECRET_FILE):
        self.secretFileName = secretFileName
        self._cache = {}
        self._secretData = None

    def _loadSecretFile(self):
        if self._secretData is not None:
            return

        secretPath = StorageLocator.getInstance().findConfig(self.secretFileName)
        if not os.path.exists(secretPath):
            self._secretData = {}
            return

        try:
            self._secretData = json.loads(Path(secretPath).read_text())
        except (json.JSONDecodeError, OSError) as e:
            logging.getLogger(__name__).warning(f"Failed to load secret file {secretPath}: {e}")
            self._secretData = {}

    def get(self, key: str):
        if self._cache.get(key):
            return self._cache[key]

        value = os.getenv(key)
        if not value:
            self._loadSecretFile()
            value = self._secretData.get(key)

        if value:
            self._cache[key] = value
        return value


# Event pattern: RESTful + /[action]
class ArchiveEvent:
    rangeFetch = Event('/archive/range/get')
    entryExtract = Event('/archive/entry/get')


eventService = EventService.getInstance()

eventService.register(ArchiveEvent.rangeFetch.key)
eventService.register(ArchiveEvent.entryExtract.key)
