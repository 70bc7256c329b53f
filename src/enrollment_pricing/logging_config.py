"""Centralized logging configuration.
Call setup_logging() once at application startup.
"""
import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pricing engine and its API."""
    root = logging.getLogger()
    # Avoid duplicate handlers on repeated calls
    if root.handlers:
        return

    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(handler)

    # Quiet noisy libraries but keep our code at the requested level
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
