import logging
import sys

from clearance.config import settings


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
