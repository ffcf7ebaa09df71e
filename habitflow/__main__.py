import logging

import uvicorn

from .config import load_settings
from .logger import setup_logging

logger = logging.getLogger(__name__)


def main():
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)
    logger.info("Starting HabitFlow on %s:%s", settings.host, settings.port)
    uvicorn.run("habitflow.app:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
