#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# tarstream - streaming ustar archiver
# Copyright (C) 2025-2026 tarstream contributors
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
import logging
import threading

# Error reporting is disabled unless SENTRY_DSN is explicitly provided.
import sentry_sdk

from enum import Enum

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.0.0'

# Map string levels to logging constants for standard level names
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

    # Add console handler if none exists
    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        # Update existing handlers
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('TAR_LOGGING_LEVEL'):
    envLogLevel = LOG_LEVEL_MAPPING.get(os.getenv('TAR_LOGGING_LEVEL').upper())
    if envLogLevel is not None:
        configureGlobalLogLevel(envLogLevel)


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration. Sentry is initialized once, and only when
    SENTRY_DSN is present in the environment.

    Args:
        name: Logger name
        version: Version string for logging context
    """
    try:
        notInit = not sentry_sdk.get_client().is_active()
        sentryDsn = os.getenv('SENTRY_DSN')

        if notInit and sentryDsn:
            # Suppress "sentry is attempting to send pending events..." on exit
            sentryAtexit.default_callback = lambda pending, timeout: None

            sentry_sdk.init(
                dsn=sentryDsn,
                default_integrations=False,
                integrations=[
                    LoggingIntegration(),
                    sentryAtexit.AtexitIntegration(),
                ],
            )

        logger = logging.getLogger(name)

        # Add Sentry handler if not already present
        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            formatter = logging.Formatter('%(asctime)s version[%(version)s] : %(message)s')

            syslog = SentryHandler()
            syslog.setFormatter(formatter)
            logger.addHandler(syslog)

        return logging.LoggerAdapter(logger, {'version': version or 'unknown'})

    except Exception as e:
        fallbackLogger = logging.getLogger(name)

        # If Sentry setup fails, log the error and continue with standard logging
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")

        return fallbackLogger


class Singleton:
    """
    Thread-safe singleton base class that can be inherited by other classes.
    Subclasses override initialize() for custom initialization.
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


class EventTiming(Enum):
    """Constants for event timing phases"""
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class EventService(Singleton):
    """
    Dispatches archive events (entry archived / listed / extracted) to observers.
    Thread-safe singleton built on 'signalslot'; observers are slots and must
    accept **kwargs.
    """

    def initialize(self):
        self.signals = {}

    def reset(self):
        """
        Clears all observers of every registered event. Only meant for test suites.
        """
        for beforeSignal, afterSignal in self.signals.values():
            for signalObject in (beforeSignal, afterSignal):
                for slot in list(signalObject._slots):
                    signalObject.disconnect(slot)

    def _normalizeTiming(self, timing):
        if timing is None:
            return None

        if isinstance(timing, EventTiming):
            return timing

        if isinstance(timing, str):
            try:
                return EventTiming(timing.upper())
            except ValueError:
                raise ValueError(f"Invalid timing value: '{timing}'. Must be 'BEFORE' or 'AFTER'.")

        raise ValueError(f"Timing must be EventTiming enum, string, or None. Got: {type(timing)}")

    def trigger(self, event, **kwargs):
        """
        Trigger an event, calling all connected observers (slots).
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

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        """
        Register a new event by creating Signal objects for it.
        """
        if self.isRegistered(event):
            return False
        self.signals[event] = (Signal(), Signal())
        return True

    def subscribe(self, event, observer, timing=EventTiming.AFTER):
        """
        Subscribe an observer to an event.
        """
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        normalizedTiming = self._normalizeTiming(timing)
        if normalizedTiming not in (EventTiming.BEFORE, EventTiming.AFTER):
            raise ValueError("Timing must be EventTiming.BEFORE or EventTiming.AFTER.")

        signalObject = self.signals[event][0 if normalizedTiming == EventTiming.BEFORE else 1]
        if observer not in signalObject._slots:
            signalObject.connect(observer)

    def unsubscribe(self, event, observer, timing=None):
        """
        Unsubscribe an observer from an event.
        """
        if not self.isRegistered(event):
            return

        timingsToCheck = [self._normalizeTiming(timing)] if timing else [EventTiming.BEFORE, EventTiming.AFTER]

        for t in timingsToCheck:
            signalObject = self.signals[event][0 if t == EventTiming.BEFORE else 1]
            if observer in signalObject._slots:
                signalObject.disconnect(observer)


class Event:
    """ Simple Event wrapper"""

    def __init__(self, key):
        self.key = key

        self.eventService = EventService.getInstance()

    def subscribe(self, observer, timing=EventTiming.AFTER):
        return self.eventService.subscribe(self.key, observer, timing=timing)

    def unsubscribe(self, observer, timing=None):
        return self.eventService.unsubscribe(self.key, observer, timing=timing)

    def trigger(self, **kwargs):
        return self.eventService.trigger(self.key, **kwargs)


# Event pattern: RESTful + /[action] (create, update, get, delete, others...)
class TarEvent:
    entryArchived = Event('/archive/entry/create')
    entryListed = Event('/archive/entry/get')
    entryExtracted = Event('/archive/entry/extract')


eventService = EventService.getInstance()

eventService.register(TarEvent.entryArchived.key)
eventService.register(TarEvent.entryListed.key)
eventService.register(TarEvent.entryExtracted.key)
