# clearmind/core/syslog2.py

import logging
import inspect
from datetime import datetime
from typing import Optional, Union


"""syslog-like log levels: 1 = highest severity, 7 = lowest"""
LOG_ALERT   = 1
LOG_CRIT    = 2
LOG_ERR     = 3
LOG_WARNING = 4
LOG_NOTICE  = 5
LOG_INFO    = 6
LOG_DEBUG   = 7

_LEVEL_NAMES = {
    LOG_ALERT: "ALERT",
    LOG_CRIT: "CRIT",
    LOG_ERR: "ERR",
    LOG_WARNING: "WARNING",
    LOG_NOTICE: "NOTICE",
    LOG_INFO: "INFO",
    LOG_DEBUG: "DEBUG",
}

# map 1..7 -> unique python logging levels (higher = more severe)
# 1 -> 70, 2 -> 60, 3 -> 50, 4 -> 40, 5 -> 30, 6 -> 20, 7 -> 10
def _sys_to_py(level: int) -> int:
    return 80 - level * 10

_current_syslog_level = LOG_WARNING
log = logging.getLogger("clearmind")


def setup_log(syslog_level: int = LOG_WARNING) -> None:
    # init backend and register custom levels
    global _current_syslog_level
    _current_syslog_level = syslog_level

    logging.basicConfig(level=logging.DEBUG, format="%(message)s")
    for level, name in _LEVEL_NAMES.items():
        logging.addLevelName(_sys_to_py(level), name)


def get_log_level() -> int:
    return _current_syslog_level


def parse_log_level(value: Optional[Union[str, int]], default: int = LOG_WARNING) -> int:
    """
    Accepts 1..7, ALERT..DEBUG or LOG_ALERT..LOG_DEBUG (case-insensitive).
    Unknown values fall back to default.
    """
    if value is None:
        return default
    text = str(value).strip().upper()
    if text.isdigit():
        num = int(text)
        return num if LOG_ALERT <= num <= LOG_DEBUG else default
    if text.startswith("LOG_"):
        text = text[4:]
    if text == "ERROR":
        text = "ERR"
    for level, name in _LEVEL_NAMES.items():
        if name == text:
            return level
    return default


def uvicorn_log_level(level: int) -> str:
    """uvicorn only knows the python level names"""
    if level <= LOG_CRIT:
        return "critical"
    if level == LOG_ERR:
        return "error"
    if level == LOG_WARNING:
        return "warning"
    if level <= LOG_INFO:
        return "info"
    return "debug"


def _get_caller_info():
    frame = inspect.currentframe()
    # frame.f_back is syslog2, frame.f_back.f_back is the actual caller
    try:
        caller = frame.f_back.f_back
    except AttributeError:
        caller = None

    if not caller:
        return "unknown", 0, "unknown"
    file_name = caller.f_code.co_filename.rsplit("/", 1)[-1]
    return file_name, caller.f_lineno, caller.f_code.co_name


def syslog2(level: int, msg: str, **params) -> None:
    # filter by configured 1..7 level
    if level > _current_syslog_level:
        return

    py_level = _sys_to_py(level)
    file_name, line_no, func_name = _get_caller_info()
    ts = datetime.now().strftime("%d.%m.%y %H:%M:%S.%f")[:-3]

    if msg and msg[0].isalpha():
        msg = msg[0].lower() + msg[1:]

    prefix = f"{ts} {file_name}:{line_no} {func_name}:"

    body = msg
    for k, v in params.items():
        if isinstance(v, str) and "\n" in v:
            body += f" {k}=\n{v}"
        else:
            body += f" {k}={v!r}"

    lines = body.split("\n")
    log.log(py_level, f"{prefix} {lines[0]}")
    if len(lines) > 1:
        # continuation lines are indented under the prefix
        indent = " " * len(prefix)
        for line in lines[1:]:
            log.log(py_level, f"{indent} {line}")
