from contextlib import contextmanager

import os
import logging.config
from typing import Optional, Protocol

DEFAULT_LOG_FORMAT = os.getenv(
  "AGENT_COMMONS_LOG_FORMAT", "%(asctime)s %(log_color)s%(levelname)5s%(reset)s %(name)-14s %(message)s"
)
FORMAT = DEFAULT_LOG_FORMAT + (" [%(pathname)s:%(lineno)d]" if os.getenv("AGENT_COMMONS_LOG_SHOW_SOURCE") else "")

# loggers owned by this package, each one falls back to the default level
COMPONENT_LOGGERS = ["engine", "dispatcher", "tool", "router", "store", "model"]

# third party loggers that are only interesting when something goes wrong
QUIET_LOGGERS = ["asyncio", "httpcore", "httpx", "LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "psycopg"]

LOG_LEVELS: dict[str, str] = {}

LEVELS: dict[str, int] = {
  "critical": logging.CRITICAL,
  "error": logging.ERROR,
  "warning": logging.WARNING,
  "info": logging.INFO,
  "debug": logging.DEBUG,
}


def get_logging_config() -> dict:
  # Disable logging if explicitly set to 0; otherwise, assume it's enabled
  if os.environ.get("AGENT_COMMONS_LOGGING", "1") == "0":
    return {
      "version": 1,
      "disable_existing_loggers": False,
    }

  if not LOG_LEVELS:
    set_log_levels(os.environ.get("AGENT_COMMONS_LOG_LEVELS"))
  return create_logging_config(LOG_LEVELS, FORMAT)


def set_log_level(module_name: str, level: str):
  """
  Set the log level for a specific module.
  """
  global LOG_LEVELS
  if not LOG_LEVELS:
    LOG_LEVELS = create_log_levels(os.environ.get("AGENT_COMMONS_LOG_LEVELS"))
  LOG_LEVELS[module_name] = level.upper()


def set_log_levels(log_levels: Optional[str]):
  global LOG_LEVELS
  LOG_LEVELS = create_log_levels(log_levels)


def get_log_levels() -> dict[str, str]:
  return dict(LOG_LEVELS)


def apply_log_levels():
  """
  Re-apply the logging configuration after levels were changed at runtime.
  """
  logging.config.dictConfig(get_logging_config())


def create_logging_config(levels: dict, log_format: str) -> dict:
  loggers = {}
  for name in QUIET_LOGGERS:
    loggers[name] = {
      "handlers": ["default"],
      "level": levels.get(name, "WARNING"),
      "propagate": False,
    }
  for name in COMPONENT_LOGGERS:
    loggers[name] = {
      "handlers": ["default"],
      "level": levels.get(name) or levels.get("default"),
      "propagate": False,
    }

  return {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
      "default": {
        "()": "agent_commons.logs.formatter.Formatter",
        "format": log_format,
        "log_colors": {
          "DEBUG": "blue",
          "INFO": "green",
          "WARNING": "yellow",
          "ERROR": "red",
          "CRITICAL": "bold_red",
        },
      },
    },
    "handlers": {
      "default": {
        "level": levels.get("default"),
        "formatter": "default",
        "class": "logging.StreamHandler",
      },
    },
    "loggers": loggers,
    "root": {"level": levels.get("default"), "handlers": ["default"]},
  }


def create_log_levels(log_levels: Optional[str]) -> dict[str, str]:
  """
  Parse a level string such as "info,engine=debug" into per-logger levels.
  """
  result = {"default": "INFO"}
  if log_levels is not None:
    for level in log_levels.split(","):
      if not level.strip():
        continue
      key_value = level.split("=")
      if len(key_value) == 1:
        result["default"] = level.strip().upper()
      else:
        result[key_value[0].strip()] = key_value[1].strip().upper()
  return result


def get_logger(logger_name):
  logging.config.dictConfig(get_logging_config())
  return logging.getLogger(logger_name)


class LoggerAware(Protocol):
  logger: logging.Logger


class InfoContext(LoggerAware):
  @contextmanager
  def info(self, before_msg, after_msg):
    self.logger.info(before_msg)
    try:
      yield
    except Exception as e:
      self.logger.info(f"{before_msg} failed: {e}")
      raise
    self.logger.info(after_msg)


class DebugContext(LoggerAware):
  @contextmanager
  def debug(self, before_msg, after_msg):
    self.logger.debug(before_msg)
    try:
      yield
    except Exception as e:
      self.logger.debug(f"{before_msg} failed: {e}")
      raise
    self.logger.debug(after_msg)
