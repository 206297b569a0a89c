#
# Description:
# Logging setup shared by the import scripts.
#
# Running an import by hand prints readable lines to stdout. Setting
# LOG_FORMAT=json switches to one JSON object per line, for scheduled imports
# whose output ends up in a log collector. LOG_LEVEL picks the level.
#

import json
import logging
import os
import sys
from datetime import datetime, timezone

# --- Configuration ---
DEFAULT_LEVEL = "INFO"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Libraries that log every statement at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


class JsonLineFormatter(logging.Formatter):
    # (key in the JSON object, LogRecord attribute)
    RECORD_FIELDS = (
        ("level", "levelname"),
        ("logger", "name"),
        ("module", "module"),
        ("function", "funcName"),
        ("line", "lineno"),
    )

    def format(self, record):
        entry = {"timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat()}
        for key, attribute in self.RECORD_FIELDS:
            entry[key] = getattr(record, attribute)
        entry["message"] = record.getMessage()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def resolve_level(level=None):
    """Turns a level name (or LOG_LEVEL) into a logging level, INFO if unknown."""
    name = (level or os.getenv("LOG_LEVEL") or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level=None, log_format=None):
    """
    Sends every log line to stdout through a single handler, replacing any
    handlers installed before.

    Args:
        level (str): Level name; defaults to LOG_LEVEL, then INFO.
        log_format (str): "json" or "text"; defaults to LOG_FORMAT, then text.

    Returns:
        logging.Logger: The root logger.
    """
    log_format = (log_format or os.getenv("LOG_FORMAT") or "text").lower()

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logging.basicConfig(level=resolve_level(level), handlers=[handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()
