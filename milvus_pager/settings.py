import logging.config
import os

from dotenv import load_dotenv

from milvus_pager.exceptions import ExceptionsMessage, ParamError

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ParamError(message=ExceptionsMessage.EnvConfigErr % (name, raw)) from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ParamError(message=ExceptionsMessage.EnvConfigErr % (name, raw)) from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    if raw.lower() in ("true", "1", "yes", "on"):
        return True
    if raw.lower() in ("false", "0", "no", "off"):
        return False
    raise ParamError(message=ExceptionsMessage.EnvConfigErr % (name, raw))


class Config:
    MILVUS_DB_NAME = str(os.getenv("MILVUS_DB_NAME", "default"))

    # retry machinery, see milvus_pager.decorators.RetrySetting
    MILVUS_RETRY_TIMES = _env_int("MILVUS_RETRY_TIMES", 75)
    MILVUS_RETRY_TIMEOUT_MS = _env_int("MILVUS_RETRY_TIMEOUT_MS", 0)
    MILVUS_INITIAL_BACKOFF_MS = _env_int("MILVUS_INITIAL_BACKOFF_MS", 10)
    MILVUS_MAX_BACKOFF_MS = _env_int("MILVUS_MAX_BACKOFF_MS", 3000)
    MILVUS_BACKOFF_MULTIPLIER = _env_float("MILVUS_BACKOFF_MULTIPLIER", 3)
    MILVUS_RETRY_ON_RATE_LIMIT = _env_bool("MILVUS_RETRY_ON_RATE_LIMIT", True)

    # per rpc deadline in seconds, None means no deadline
    MILVUS_RPC_TIMEOUT = _env_float("MILVUS_RPC_TIMEOUT", 0) or None

    EncodeProtocol = "utf-8"


# logging
COLORS = {
    "HEADER": "\033[95m",
    "INFO": "\033[92m",
    "DEBUG": "\033[94m",
    "WARNING": "\033[93m",
    "ERROR": "\033[95m",
    "CRITICAL": "\033[91m",
    "ENDC": "\033[0m",
}


class ColorFulFormatColMixin:
    def format_col(self, message_str: str, level_name: str):
        if level_name in COLORS:
            message_str = COLORS.get(level_name) + message_str + COLORS.get("ENDC")
        return message_str


class ColorfulFormatter(logging.Formatter, ColorFulFormatColMixin):
    def format(self, record: logging.LogRecord):
        message_str = super().format(record)

        return self.format_col(message_str, level_name=record.levelname)


def init_log(log_level: str):
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s][%(funcName)s]: %(message)s (%(filename)s:%(lineno)s)",
            },
            "colorful_console": {
                "format": "%(asctime)s | %(levelname)s: %(message)s (%(filename)s:%(lineno)s) (%(process)s)",
                "()": ColorfulFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colorful_console",
            },
            "no_color_console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": {
            "milvus_pager": {
                "handlers": ["no_color_console"],
                "level": log_level,
                "propagate": False,
            },
            "milvus_pager.milvus_client": {
                "handlers": ["no_color_console"],
                "level": "INFO",
                "propagate": False,
            },
        },
    }
    logging.config.dictConfig(logging_config)


init_log("WARNING")
