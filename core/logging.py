"""
core/logging.py -- One place for the log format shared by every salonauth logger.

Library modules only call logging.getLogger("salonauth.<area>"). Handlers and
format are the hosting application's decision; configure_logging() is the
default the bundled app factory applies.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Apply the standard salonauth log format to the root logger.

    basicConfig is a no-op when the root logger already has handlers, so a
    host that configured logging first keeps its own setup.
    """
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logging.getLogger("salonauth").setLevel(level)
