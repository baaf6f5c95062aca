import os
import sys

from loguru import logger


def setup_logging(level=None, quiet=None, log_file=None):
    """
    Configures loguru sinks for command-line use.

    Library code only emits through ``logger``; sinks are installed here so
    that importing callindex never touches the host application's logging.

    Args:
        level: Console level. Defaults to CALLINDEX_LOG_LEVEL or INFO.
        quiet: If True, no console sink. Defaults to CALLINDEX_QUIET.
        log_file: Optional path for a rotating file sink. Defaults to CALLINDEX_LOG_FILE.
    """
    level = level or os.getenv("CALLINDEX_LOG_LEVEL", "INFO")
    if quiet is None:
        quiet = os.getenv("CALLINDEX_QUIET", "").lower() in ("1", "true", "yes")
    log_file = log_file or os.getenv("CALLINDEX_LOG_FILE")

    logger.remove()

    if not quiet:
        logger.add(
            sys.stderr,
            level=level,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
            ),
            colorize=True,
        )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="gz",
            catch=True,
        )
