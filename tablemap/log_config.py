import logging
import logging.config

from tablemap.settings import settings


def default_logging_config(level: str | None = None) -> dict:
    """Build the dictConfig used by the CLI and by applications embedding tablemap.

    :param str | None level: log level override, defaults to the settings value
    :return dict: a logging.config.dictConfig compatible mapping
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",  # Default is stderr
                "formatter": "default",
            },
        },
        "loggers": {
            # SQL emitted by tablemap is logged by tablemap.database at DEBUG
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["console"],
            "level": (level or settings.log_level).upper(),
        },
    }


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(default_logging_config(level))
