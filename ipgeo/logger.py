from logging import Logger, config, getLevelName, getLogger

LOGGER_NAME = "ipgeo"

logger = getLogger(LOGGER_NAME)


def build_log_config(level: str = "INFO") -> dict:
    """dictConfig payload sharing uvicorn's formatters between the service and the server."""
    log_level = getLevelName(level.upper())  # DEBUG, WARNING, ERROR
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(asctime)s - %(client_addr)s - "%(request_line)s" %(status_code)s',
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "use_colors": True,
            },
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "use_colors": True,
            },
        },
        "handlers": {
            "access": {"class": "logging.StreamHandler", "formatter": "access", "stream": "ext://sys.stdout"},
            "default": {"class": "logging.StreamHandler", "formatter": "default", "stream": "ext://sys.stderr"},
        },
        "loggers": {
            # ipgeo.cache, ipgeo.clients.* and friends propagate here.
            LOGGER_NAME: {"handlers": ["default"], "level": log_level, "propagate": False},
            "uvicorn": {"handlers": ["default"], "level": log_level, "propagate": True},
            "uvicorn.access": {"handlers": ["access"], "level": log_level, "propagate": False},
            "uvicorn.error": {"level": log_level, "propagate": False},
        },
    }


def configure_logging(level: str = "INFO") -> None:
    """Install the service's handlers. Only the FastAPI app and the launcher call this."""
    config.dictConfig(build_log_config(level))


def get_logger(name: str) -> Logger:
    """Child of the package logger, e.g. get_logger("cache") -> "ipgeo.cache"."""
    return logger.getChild(name)
