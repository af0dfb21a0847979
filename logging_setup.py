# logging_setup.py
"""Root logger setup shared by caption.py and the preprocess.py script."""
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] [%(name)-20.20s]: %(message)s"
NOISY_LOGGERS = ("nltk", "urllib3")


def setup_logging(level_str: str = "INFO"):
    """
    Send log records to stdout at the given level name (DEBUG, INFO, ...).
    Vocabulary building and beam search report through module loggers;
    captions themselves are printed, not logged.
    """
    level = logging.getLevelName(level_str.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {level_str}")

    # stdout keeps tqdm's stderr progress bar separate from log lines
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])
    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("caption").debug(f"log level set to {level_str.upper()}")
