"""Logging setup and helpers."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def setup_logging(debug: bool = False) -> None:
    """Configure the root logger once for the process."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO, including URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_key(key: str) -> str:
    """Render an API key as its last four characters."""
    return f"...{key[-4:]}"
