from colorlog import ColoredFormatter
from datetime import datetime, UTC

GREY = "\033[38;5;245m"
YELLOW = "\033[33m"
RESET = "\033[0m"

# keeps the level column five characters wide
LEVEL_LABELS = {"WARNING": f"{YELLOW} WARN{RESET}"}


def grey(text: str) -> str:
  return f"{GREY}{text}{RESET}"


class Formatter(ColoredFormatter):
  """
  Single-line colored records: grey UTC timestamp, level, grey logger name
  with ``::`` separators, message.
  """

  def format(self, record):
    record.levelname = LEVEL_LABELS.get(record.levelname, record.levelname)
    return super().format(record)

  def formatTime(self, record, datefmt=None) -> str:
    try:
      timestamp = datetime.fromtimestamp(record.created, UTC)
    except (OverflowError, OSError, ValueError):
      # the clock can be unusable while the interpreter shuts down
      return f"{record.created}"
    if datefmt:
      return timestamp.strftime(datefmt)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")

  def formatMessage(self, record) -> str:
    name = record.name
    try:
      record.name = grey(name.replace(".", "::"))
      record.asctime = grey(self.formatTime(record, self.datefmt))
      return super().formatMessage(record)
    finally:
      record.name = name
