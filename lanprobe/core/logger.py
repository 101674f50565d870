"""Logging setup for the command line front end."""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(loglevel: Union[str, int] = 'INFO', logfile: Optional[str] = None) -> None:
    """
    Route log records to stderr and, optionally, a rotating log file.

    Safe to call more than once; previous handlers installed here are replaced.
    """
    if isinstance(loglevel, str):
        numeric_level = getattr(logging, loglevel.upper(), None)
        if not isinstance(numeric_level, int):
            raise ValueError(f'Invalid log level: {loglevel}')
    else:
        numeric_level = loglevel

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, '_lanprobe', False):
            root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._lanprobe = True
    root.addHandler(console)

    if logfile:
        file_handler = RotatingFileHandler(logfile, maxBytes=1_000_000, backupCount=3)
        file_handler.setFormatter(formatter)
        file_handler._lanprobe = True
        root.addHandler(file_handler)

    root.setLevel(numeric_level)

    # asyncio complains more than it needs to
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
