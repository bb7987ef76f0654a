#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Logger -- sets the logging and provides a `logger` global object.
"""

import logging
from datetime import datetime, timezone
from types import TracebackType
from typing import Mapping, Optional, Tuple, Type, Union

import ecs_logging
from dateutil.tz import tzlocal

from dust_connectors import __version__


class ColorFormatter(logging.Formatter):
    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"
    COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    DATE_FMT = "%H:%M:%S"

    def __init__(self, prefix) -> None:
        self.custom_format = "[" + prefix + "][%(asctime)s][%(levelname)s] %(message)s"
        super().__init__(datefmt=self.DATE_FMT)
        self.local_tz = tzlocal()

    def converter(self, timestamp: float) -> datetime:
        dt = datetime.fromtimestamp(timestamp, self.local_tz)
        return dt.astimezone(timezone.utc)

    # aware datetimes, always rendered in UTC
    def formatTime(
        self, record: logging.LogRecord, datefmt: Optional[str] = None
    ) -> str:
        dt = self.converter(record.created)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        self._style._fmt = self.COLORS[record.levelno] + self.custom_format + self.RESET
        return super().format(record)


class DocumentLogger:
    """Logger bound to a prefix and a set of ECS fields.

    Used by the sync engine to tag every line with the connector, the drive
    or the activity it relates to, e.g.

        log = DocumentLogger("[Connector id: 42]", {"labels.connector_id": 42})
        log.info("Synced 10 files")
    """

    def __init__(self, prefix, extra) -> None:
        self._prefix = prefix
        self._extra = extra

    @property
    def prefix(self):
        return self._prefix

    @property
    def extra(self):
        return self._extra

    def isEnabledFor(self, level):
        return logger.isEnabledFor(level)

    def _log(self, level, msg, *args, **kwargs):
        logger.log(
            level,
            msg,
            *args,
            prefix=self._prefix,  # pyright: ignore
            extra=dict(self._extra),
            **kwargs,
        )

    def debug(self, msg, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg, *args, exc_info: bool = True, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def critical(self, msg, *args, **kwargs) -> None:
        self._log(logging.CRITICAL, msg, *args, **kwargs)


class ExtraLogger(logging.Logger):
    def _log(
        self,
        level: int,
        msg: str,
        args: Union[Mapping[str, object], Tuple[object, ...]],
        exc_info: Union[
            None,
            BaseException,
            bool,
            Tuple[Type[BaseException], BaseException, Optional[TracebackType]],
            Tuple[None, ...],
        ] = None,
        prefix=None,
        extra: Optional[Mapping[str, object]] = None,
        **kwargs,
    ) -> None:
        if (
            not (hasattr(self, "filebeat") and self.filebeat)  # pyright: ignore
            and prefix
        ):
            msg = f"{prefix} {msg}"

        extra = dict(extra or {})
        extra.update(
            {
                "service.type": "dust-connectors",
                "service.version": __version__,
            }
        )
        super(ExtraLogger, self)._log(level, msg, args, exc_info, extra, **kwargs)


logging.setLoggerClass(ExtraLogger)
logger: logging.Logger = logging.getLogger("dust_connectors")
logger_initialized = False


def set_logger(log_level: int = logging.INFO, filebeat: bool = False):
    global logger
    global logger_initialized
    if filebeat:
        formatter = ecs_logging.StdlibFormatter()
    else:
        formatter = ColorFormatter("DUST")

    if not logger_initialized:
        logger.handlers.clear()
        handler = logging.StreamHandler()
        logger.addHandler(handler)
        logger_initialized = True

    logger.propagate = False
    logger.setLevel(log_level)
    logger.handlers[0].setLevel(log_level)
    logger.handlers[0].setFormatter(formatter)
    logger.filebeat = filebeat  # pyright: ignore
    return logger


def set_extra_logger(
    logger: Union[str, logging.Logger],
    log_level: Union[int, str] = logging.INFO,
    prefix: str = "ES",
    filebeat: bool = False,
) -> None:
    if isinstance(logger, str):
        logger = logging.getLogger(logger)
    handler = logging.StreamHandler()
    if filebeat:
        handler.setFormatter(ecs_logging.StdlibFormatter())
    else:
        handler.setFormatter(ColorFormatter(prefix))
    handler.setLevel(log_level)
    logger.addHandler(handler)
    logger.setLevel(log_level)


set_logger()
