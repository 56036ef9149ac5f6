import logging
import sys
from . import config  # To get LOG_FILE


def setup_logging(log_level=logging.INFO, testing_mode=False):
    """Configures logging for the application.

    Console output goes to stderr: when the server runs over stdio, stdout
    carries the MCP protocol and must not receive log lines.
    """

    logger = logging.getLogger("gmail_mcp")  # Root logger for our app
    logger.setLevel(log_level)

    # Prevent multiple handlers if setup_logging is called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
    )

    if not testing_mode:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    log_file_path = config.LOG_FILE
    try:
        config.ensure_data_dir()
        file_handler = logging.FileHandler(log_file_path, mode="a")  # 'a' for append
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except Exception as e:
        # If logger itself is having issues, print directly as a fallback
        print(f"CRITICAL LOGGING ERROR during file_handler setup: {e}", file=sys.stderr)
        if logger:
            logger.error(f"Failed to set up file handler for logging: {e}", exc_info=True)

    if not testing_mode or log_level <= logging.DEBUG:
        logger.info(f"Logging initialized. Log file: {log_file_path}")

    return logger
