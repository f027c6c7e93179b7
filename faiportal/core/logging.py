import logging
from loguru import logger

from faiportal.core.config import settings

# Chatty third-party loggers, quiet unless DEBUG is on
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "google_genai")


# Remove existing handlers
for handler in logging.root.handlers[:]:
    logging.root.removeHandler(handler)


class InterceptHandler(logging.Handler):
    """Forwards stdlib records (uvicorn, SQLAlchemy, google-genai) to loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip the logging module's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(origin=record.name).log(
            level, record.getMessage()
        )


def setup_logging():
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)

    # Submission lifecycle and analysis outcomes go to the rotating file
    logger.add(
        settings.log_file,
        rotation="100 MB",
        compression="zip",
        level="DEBUG" if settings.debug else "INFO",
        backtrace=True,
        diagnose=settings.debug,
    )
