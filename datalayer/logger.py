"""
Shared logger for the data layer.

Every module logs through ``from datalayer.logger import logger`` with
%-style arguments and a bracketed tag naming the step, e.g.
``logger.info("[CONNECT] Connected to %s", host)``.
"""

import logging
import sys

from datalayer.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("datalayer")

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_handler)

logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
