"""Run VulnRelay with Granian: ``python -m vulnrelay``."""

import logging
import sys

from granian import Granian
from granian.constants import Interfaces

from vulnrelay.config import Settings
from vulnrelay.exceptions import ConfigurationError

logger = logging.getLogger("vulnrelay")


def main() -> int:
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 1

    Granian(
        "vulnrelay.main:app",
        address="0.0.0.0",
        port=settings.port,
        interface=Interfaces.ASGI,
    ).serve()
    return 0


if __name__ == "__main__":
    sys.exit(main())
