"""Logging configuration for TuringTable."""

import logging
import sys
from pathlib import Path
from datetime import datetime


def setup_logger(
    verbose: bool = True, save_to_file: bool = True, log_dir: str = "data/games"
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set level to DEBUG, otherwise INFO
        save_to_file: If True, also log to a timestamped file
        log_dir: Directory for game log files

    Returns:
        Configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )
    simple_formatter = logging.Formatter("%(message)s")

    # Console shows table events only; websockets and grpc chatter go to the file
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(simple_formatter)
    console_handler.addFilter(lambda record: record.name.startswith("turingtable"))
    logger.addHandler(console_handler)

    if save_to_file:
        try:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = path / f"game_{timestamp}.log"

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            logger.addHandler(file_handler)

            logging.getLogger("turingtable").info(f"Logging to file: {log_file}")
        except OSError as e:
            logger.error(f"Failed to create file handler: {e}")

    return logger
