import logging
import os

from dotenv import load_dotenv

# 1. Load environment variables from .env file
load_dotenv()


def _flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# 2. Get the URL. If it's not found, raise an error to fail fast.
DATABASE_URL = os.environ.get("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")

SQL_ECHO = _flag("SQL_ECHO")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Standard actors may only fetch their own bookings when set
ENFORCE_VIEW_OWNERSHIP = _flag("ENFORCE_VIEW_OWNERSHIP")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
