import logging
import sys


def configure_logging(level: str = "INFO", *, debug: bool = False) -> None:
    """Configure root logger for local dev and container use."""
    logging.basicConfig(
        level="DEBUG" if debug else level,
        format="%(asctime)s | %(levelname)-8s | %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    for noisy in ("uvicorn.access", "httpx", "aiosqlite", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
