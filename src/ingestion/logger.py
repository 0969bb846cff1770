"""Package logger shared by the ingestion pipeline."""

import logging
import sys

logger = logging.getLogger("comic_ingest")


def setup_logging(level: int = logging.INFO, device_name: str = "local") -> None:
    """Attach a console handler that tags every line with the device name.

    Calling it again replaces the previous handler instead of stacking a new one.
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(f"%(asctime)s [%(levelname)s] [{device_name}] %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
