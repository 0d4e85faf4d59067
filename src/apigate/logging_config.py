import sys

from loguru import logger

from apigate.config import Settings


def configure_logging(settings: Settings) -> None:
    """Replace loguru's default sink with one driven by LOG_LEVEL / LOG_JSON."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        serialize=settings.log_json,
        backtrace=not settings.is_production,
        diagnose=not settings.is_production,
    )
