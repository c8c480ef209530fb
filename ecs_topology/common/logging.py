#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Logger of ecs-topology.

DEBUG and INFO records go to stdout, WARNING and above to stderr, so that rendering errors
can be told apart from the compilation progress. DEBUG records also show where they were emitted from.
"""

from __future__ import annotations

import logging as logthings
import sys

LOGGER_NAME = "ecs-topology"


class TopologyFormatter(logthings.Formatter):
    default_format = "%(asctime)s [%(levelname)8s] %(message)s"
    debug_format = "%(asctime)s [%(levelname)8s] (%(filename)s.%(lineno)d , %(funcName)s,) %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    def __init__(self):
        super().__init__(self.default_format, self.date_format)
        self.debug_formatter = logthings.Formatter(self.debug_format, self.date_format)

    def format(self, record) -> str:
        if record.levelno == logthings.DEBUG:
            return self.debug_formatter.format(record)
        return super().format(record)


class LevelRangeFilter(logthings.Filter):
    """Lets through the records with min_level <= level < max_level"""

    def __init__(self, min_level: int, max_level: int = None):
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record) -> bool:
        if self.max_level is not None and record.levelno >= self.max_level:
            return False
        return record.levelno >= self.min_level


def define_handler(stream, level: int, max_level: int = None) -> logthings.Handler:
    handler = logthings.StreamHandler(stream)
    handler.setFormatter(TopologyFormatter())
    handler.setLevel(level)
    handler.addFilter(LevelRangeFilter(level, max_level))
    return handler


def setup_logging(logger_name: str = LOGGER_NAME) -> logthings.Logger:
    """
    Sets the handlers of the application logger. The stdout handler must stay first: --loglevel sets its level.
    """
    root_logger = logthings.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    app_logger = logthings.getLogger(logger_name)
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)

    app_logger.addHandler(define_handler(sys.stdout, logthings.DEBUG, logthings.WARNING))
    app_logger.addHandler(define_handler(sys.stderr, logthings.WARNING))
    app_logger.setLevel(logthings.INFO)
    return app_logger


LOG = setup_logging()
