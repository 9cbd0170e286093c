import sys
import logging
import structlog
from ..util.terminal_color import TerminalColorMarks

LOGGER_NAME = "liteboxd-core"

bound_logging_vars = structlog.contextvars.bound_contextvars


def get_logging_contextvars():
    return structlog.contextvars.get_contextvars()


def __reset_handlers(logger: logging.Logger) -> None:
    # get_logger may run more than once per process (tests, reloads)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


def __get_json_logger():
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.PATHNAME,
            ]
        ),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.dict_tracebacks,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    __reset_handlers(logger)
    logger.addHandler(handler)
    return logger


class ColoredFormatter(logging.Formatter):
    """Colours the level name and appends any bound context (e.g. sandbox_id)."""

    LEVEL_COLORS = {
        logging.DEBUG: TerminalColorMarks.CYAN,
        logging.INFO: TerminalColorMarks.BLUE,
        logging.WARNING: TerminalColorMarks.YELLOW,
        logging.ERROR: TerminalColorMarks.RED,
        logging.CRITICAL: TerminalColorMarks.RED,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, TerminalColorMarks.BLUE)
        original_levelname = record.levelname
        record.levelname = f"{color}{record.levelname}{TerminalColorMarks.END}"
        try:
            formatted = super().format(record)
        finally:
            record.levelname = original_levelname

        context = get_logging_contextvars()
        if context:
            pairs = " ".join(f"{k}={v}" for k, v in sorted(context.items()))
            formatted = f"{formatted} [{pairs}]"
        return formatted


def __get_text_logger():
    logger = logging.getLogger(LOGGER_NAME)

    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter("%(levelname)s - %(asctime)s - %(message)s"))
    __reset_handlers(logger)
    logger.addHandler(handler)
    return logger


def get_logger(format: str = "text", level: str = "INFO") -> logging.Logger:
    if format == "json":
        LOG = __get_json_logger()
    else:
        LOG = __get_text_logger()
    LOG.setLevel(level)
    return LOG
