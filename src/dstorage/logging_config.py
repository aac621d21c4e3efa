"""Lightweight logging setup for the command line."""

import logging
import sys


def configure_logging(level: int = logging.WARNING) -> None:
    # Configure root logger once; log to stderr so stdout stays pipeable.
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("dstorage").setLevel(level)
