import logging
import sys
from typing import Iterable, Optional

LOGGER_NAME = "bayesdrive"
FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# font and image backends chatter at DEBUG when figures are saved
NOISY = ("matplotlib", "PIL")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY,
) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    formatter = logging.Formatter(FORMAT, datefmt="%H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.debug("Logging to %s", ", ".join(type(h).__name__ for h in handlers))
    return logger
