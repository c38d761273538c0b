from enum import Enum
from typing import Union

__all__ = [
    "Color", "LOG_LEVELS", "SEVERITIES",
    "verbose", "debug", "info", "warn", "error", "log",
    "set_log_level", "get_log_level",
]

class Color(Enum):
    RED            = '\033[31m'
    YELLOW         = '\033[33m'
    CYAN           = '\033[36m'
    RESET          = '\033[0m'

    def __str__(self):
        return self.value

    def __call__(self, s):
        return str(self) + str(s) + str(Color.RESET)

# 'verbose' and 'debug' share the lowest level.
LOG_LEVELS = {
    'verbose': 0,
    'debug':   0,
    'info':    1,
    'warn':    2,
    'warning': 2,
    'error':   3,
}

# Severities accepted by the importer log sink.
SEVERITIES = ('verbose', 'info', 'warning', 'error')

log_level = LOG_LEVELS['warn']

def set_log_level(level: Union[str, int]):
    global log_level
    if isinstance(level, str):
        log_level = LOG_LEVELS[level]
    else:
        log_level = int(level)

def get_log_level():
    return log_level

def _enabled(level_name: str) -> bool:
    return log_level <= LOG_LEVELS[level_name]

def _emit(tag, args, prefix=True):
    if tag is not None and prefix and any(args):
        print(tag, *args)
    else:
        print(*args)

def verbose(*args):
    if _enabled('verbose'):
        _emit(Color.CYAN('VERBOSE:'), args)

def debug(*args):
    if _enabled('debug'):
        _emit(None, args)

def info(*args):
    if _enabled('info'):
        _emit(None, args)

def warn(*args, prefix=True):
    if _enabled('warn'):
        _emit(Color.YELLOW('WARNING:'), args, prefix)

def error(*args, prefix=True):
    if _enabled('error'):
        _emit(Color.RED('ERROR:'), args, prefix)

_SINKS = {
    'verbose': verbose,
    'info':    info,
    'warning': warn,
    'error':   error,
}

def log(severity: str, *args):
    sink = _SINKS.get(severity, None)
    if sink is None:
        raise ValueError(f'Unknown log severity: {severity}. expected one of {SEVERITIES}')
    sink(*args)
