"""
Logging for the earnings service.

Modules take their logger from here:

    from earnings.logging import get_logger
    logger = get_logger(__name__)
"""

import logging
import os
import sys
from functools import cache

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
# Vercel stamps every line it captures
VERCEL_FORMAT = "%(levelname)s [%(name)s] %(message)s"


def _on_vercel() -> bool:
    return bool(os.environ.get("VERCEL"))


def setup_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(VERCEL_FORMAT if _on_vercel() else DEFAULT_FORMAT))
    root.addHandler(handler)

    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))
    # Paystack and Resend calls log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


setup_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def mask_account_number(account_number: str | None) -> str:
    """Keep only the last four digits of a bank account number."""
    if not account_number:
        return "N/A"
    return "*" * max(len(account_number) - 4, 0) + account_number[-4:]
