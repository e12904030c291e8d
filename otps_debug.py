"""
Debug logging for otps.

Silent unless enable_debug() is called (the --debug flag). Messages go to
stderr with the milliseconds elapsed since startup.
"""

import logging
import sys

logger = logging.getLogger("otps")
logger.addHandler(logging.NullHandler())


def enable_debug(stream=None):
    """Turn on debug output with timing"""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("[debug +%(relativeCreated)6.0fms] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def debug_log(message: str):
    logger.debug(message)
