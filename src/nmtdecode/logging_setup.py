"""
Logging Configuration.

Results go to stdout; diagnostics, warnings and reports go to stderr.
"""

import logging
import sys


def setup_logging(level_str: str = "INFO"):
    """Configures logging for the command line tools."""
    numeric_level = getattr(logging, level_str.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level_str}")

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)-5.5s] [%(name)-24.24s]: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    logging.getLogger("nmtdecode").debug("Logging initialized at level %s", level_str.upper())
